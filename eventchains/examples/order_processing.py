"""
Order processing example demonstrating a business workflow with EventChains.

A STRICT chain validates, prices, charges and ships an order. The middleware
library supplies logging, timing, validation and retry around every step.
"""

import asyncio
import logging

from eventchains import (
    ChainableEvent,
    EventChain,
    EventChainError,
    LoggingMiddleware,
    RetryMiddleware,
    TimingMiddleware,
    ValidationMiddleware,
)

TAX_RATE = 0.08


class ValidateOrder(ChainableEvent):
    def execute(self, context):
        order = context.get('order', dict)

        if not order.get('items'):
            return self.failure("Order has no items")
        if not order.get('customer_id'):
            return self.failure("Customer ID is missing")
        if not order.get('customer_email'):
            return self.partial_success("No email on file, confirmation will be skipped", 80)

        return self.success()


class CalculateTotals(ChainableEvent):
    def execute(self, context):
        items = context.get('order', dict)['items']

        subtotal = sum(item['price'] * item['quantity'] for item in items)
        tax = round(subtotal * TAX_RATE, 2)

        context.set('subtotal', subtotal)
        context.set('tax', tax)
        context.set('total', round(subtotal + tax, 2))
        return self.success({'subtotal': subtotal, 'tax': tax})


class ProcessPayment(ChainableEvent):
    """Charges through a gateway callable, which may raise on transient errors."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def execute(self, context):
        payment_id = await self.gateway(context.get('total', float))
        context.set('payment_id', payment_id)
        context.set('payment_status', 'completed')
        return self.success({'payment_id': payment_id})


class CreateShipment(ChainableEvent):
    def execute(self, context):
        order = context.get('order', dict)
        shipment_id = f"SHIP-{order['id']}"
        context.set('shipment_id', shipment_id)
        context.append('shipments', shipment_id)
        return self.success()


async def fake_gateway(amount):
    await asyncio.sleep(0)
    return f"PAY-{int(amount * 100):08d}"


def create_sample_order(order_id, customer_id):
    return {
        'id': order_id,
        'customer_id': customer_id,
        'customer_email': f'customer{customer_id}@example.com',
        'items': [
            {'name': 'Widget', 'price': 19.99, 'quantity': 2},
            {'name': 'Gadget', 'price': 49.99, 'quantity': 1},
            {'name': 'Doohickey', 'price': 9.99, 'quantity': 3},
        ],
    }


def build_chain(order, gateway=fake_gateway, log_action=None):
    """Build a STRICT order chain with its context seeded with the order."""
    chain = (EventChain.strict()
        .add_event(ValidateOrder())
        .add_event(CalculateTotals())
        .add_event(ProcessPayment(gateway))
        .add_event(CreateShipment())
        .use_middleware(RetryMiddleware(max_retries=2, delay_ms=10))
        .use_middleware(ValidationMiddleware.require_context_keys('order'))
        .use_middleware(TimingMiddleware())
        .use_middleware(LoggingMiddleware(log_action) if log_action
                        else LoggingMiddleware.to_logger()))
    chain.get_context().set('order', order)
    return chain


async def process(order):
    try:
        result = await build_chain(order).execute()
    except EventChainError as exc:
        print(f"✗ Order {order['id']} failed: {exc} (grade {exc.result.get_grade()})")
        return exc.result

    print(f"✓ Order {order['id']} processed: total ${result.context.get('total'):.2f}, "
          f"payment {result.context.get('payment_id')}")
    return result


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    print("=" * 60)
    print("EventChains Order Processing Example")
    print("=" * 60)

    orders = [
        create_sample_order('ORD-001', 'CUST-123'),
        create_sample_order('ORD-002', 'CUST-456'),
        dict(create_sample_order('ORD-003', 'CUST-789'), items=[]),
    ]

    results = [asyncio.run(process(order)) for order in orders]
    successful = sum(1 for result in results if result.success)

    print("=" * 60)
    print(f"Summary: {successful} successful, {len(results) - successful} failed")
    print("=" * 60)


if __name__ == "__main__":
    main()
