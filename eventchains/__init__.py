"""
EventChains - Sequential event orchestration with graduated precision

EventChains runs an ordered sequence of events against one shared context,
wraps every event in a composable middleware pipeline, and aggregates the
outcomes into a chain-level result. Outcomes are graduated: each event
reports a 0-100 precision score as well as success or failure.

- Events represent individual steps in a process
- Context carries shared state between events
- Middleware adds reusable behaviors around event execution
- Chain orchestrates the flow under a fault tolerance mode
  (strict, lenient, best effort, or custom)

Example:
    import asyncio
    from eventchains import EventChain, ChainableEvent

    class Double(ChainableEvent):
        def execute(self, context):
            context.set('output', context.get('input') * 2)
            return self.success()

    chain = EventChain.strict().add_event(Double())
    chain.get_context().set('input', 5)

    result = asyncio.run(chain.execute_with_results())
    print(result.context.get('output'))  # 10
"""

__version__ = "2.0.0"
__author__ = "EventChains Contributors"

from .chain import CUSTOM_SUCCESS, EventChain, FaultTolerance, FaultTolerancePolicy
from .context import ContextKey, EventContext
from .errors import ContextKeyError, ContextTypeError, EventChainError, EventContextError
from .event import ChainableEvent, event_name
from .events import (
    ConditionalEvent,
    LayeredPrecisionEvent,
    PrecisionLayer,
    SubChainEvent,
    TimingEvent,
    ValidationEvent,
)
from .middleware import (
    AuthorizationMiddleware,
    CachingMiddleware,
    DetailedLoggingMiddleware,
    ErrorHandlingMiddleware,
    InvariantMiddleware,
    LoggingMiddleware,
    Middleware,
    RateLimitingMiddleware,
    RetryMiddleware,
    TimingMiddleware,
    ValidationMiddleware,
)
from .parallel import ParallelEventChain
from .result import ChainResult, EventResult

__all__ = [
    # Core
    'EventChain',
    'ParallelEventChain',
    'FaultTolerance',
    'FaultTolerancePolicy',
    'CUSTOM_SUCCESS',
    'EventContext',
    'ContextKey',
    'ChainableEvent',
    'event_name',
    'EventResult',
    'ChainResult',

    # Errors
    'EventChainError',
    'EventContextError',
    'ContextKeyError',
    'ContextTypeError',

    # Events
    'TimingEvent',
    'LayeredPrecisionEvent',
    'PrecisionLayer',
    'ConditionalEvent',
    'SubChainEvent',
    'ValidationEvent',

    # Middleware
    'Middleware',
    'TimingMiddleware',
    'LoggingMiddleware',
    'DetailedLoggingMiddleware',
    'CachingMiddleware',
    'RateLimitingMiddleware',
    'AuthorizationMiddleware',
    'ValidationMiddleware',
    'InvariantMiddleware',
    'ErrorHandlingMiddleware',
    'RetryMiddleware',
]
