"""
Quick-time event example: graduated precision with BEST_EFFORT chains.

A QTE prompt has three concentric rings. Hitting a ring succeeds, hitting an
inner ring scores higher, and every ring is judged regardless of misses.
"""

import asyncio

from eventchains import (
    EventChain,
    LayeredPrecisionEvent,
    TimingEvent,
    TimingMiddleware,
)


class ParryRings(LayeredPrecisionEvent):
    def __init__(self):
        super().__init__()
        (self.add_layer('Outer', 500, 50, effect='block')
             .add_layer('Middle', 250, 80, effect='deflect')
             .add_layer('Inner', 100, 100, effect='riposte'))


class PerfectWindow(TimingEvent):
    def __init__(self):
        super().__init__(window_ms=100, precision_score=90, effect='slowmo')


class GoodWindow(TimingEvent):
    def __init__(self):
        super().__init__(window_ms=300, precision_score=60, effect='counter')


def build_chain(input_time_ms):
    """Build a BEST_EFFORT chain judging one input."""
    chain = (EventChain.best_effort()
        .add_event(ParryRings())
        .add_event(PerfectWindow())
        .add_event(GoodWindow())
        .use_middleware(TimingMiddleware()))
    chain.get_context().set('input_time_ms', input_time_ms)
    return chain


async def judge(input_time_ms):
    result = await build_chain(input_time_ms).execute_with_results()

    print(f"Input at {input_time_ms}ms -> grade {result.get_grade()} "
          f"({result.total_precision_score:.1f})")
    for event_result in result.event_results:
        print(f"  {event_result}")
    print(f"  Best effect: {result.context.get_or_default('best_effect', 'none')}")
    return result


def main():
    print("=" * 60)
    print("EventChains QTE Example")
    print("=" * 60)

    for input_time_ms in (40, 180, 420, 900):
        asyncio.run(judge(input_time_ms))
        print()


if __name__ == "__main__":
    main()
