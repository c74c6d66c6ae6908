"""
ParallelEventChain - Fan-out variant of EventChain.

WARNING: this is NOT suitable for most EventChains use cases:
- Events cannot depend on each other's results
- Context race conditions are possible (the context has no locking)
- Order of execution is not guaranteed

Use it only when events are completely independent, e.g. sending the same
notification to many users, and either only read the context or write
disjoint keys. Keeping them apart is the caller's responsibility.
"""

import asyncio
import inspect
import logging
import time

from .context import EventContext
from .errors import EventChainError
from .event import event_name
from .result import ChainResult, EventResult, calculate_precision_score

logger = logging.getLogger(__name__)


class ParallelEventChain:
    """
    Runs every event concurrently against one shared context, then checks.

    There is no fault tolerance mode: all events are attempted and the run
    succeeds only if none of them failed. Coroutine events run on the event
    loop; plain execute() methods run on worker threads.
    """

    def __init__(self, max_parallelism=None, context=None):
        """
        Initialize a ParallelEventChain.

        Args:
            max_parallelism: Maximum events in flight at once (None = unlimited)
            context: Optional EventContext to use instead of a fresh one
        """
        self._events = []
        self._context = context if context is not None else EventContext()
        self._max_parallelism = None
        self.with_max_parallelism(max_parallelism)

    def with_max_parallelism(self, max_parallelism):
        """
        Set the concurrency cap. None or a value below 1 means unlimited.

        Returns:
            self (for method chaining)
        """
        if max_parallelism is not None and max_parallelism < 1:
            max_parallelism = None
        self._max_parallelism = max_parallelism
        return self

    @property
    def max_parallelism(self):
        return self._max_parallelism

    def add_event(self, event):
        """
        Add an independent event.

        Returns:
            self (for method chaining)
        """
        self._events.append(event)
        return self

    def get_context(self):
        """Return the context shared by all events."""
        return self._context

    def event_count(self):
        """Return the number of events in the chain."""
        return len(self._events)

    async def _run_event(self, event, semaphore):
        name = event_name(event)
        try:
            if semaphore is None:
                return await self._invoke(event)
            async with semaphore:
                return await self._invoke(event)
        except Exception as exc:
            logger.warning("Event %s raised %s: %s", name, type(exc).__name__, exc,
                           exc_info=True)
            return EventResult.create_failure(name, f"Exception: {exc}")

    async def _invoke(self, event):
        if inspect.iscoroutinefunction(event.execute):
            result = await event.execute(self._context)
        else:
            result = await asyncio.to_thread(event.execute, self._context)
            if inspect.isawaitable(result):
                result = await result
        if not isinstance(result, EventResult):
            raise TypeError(f"{event_name(event)} returned {type(result).__name__}, "
                            f"expected EventResult")
        return result

    async def execute_with_results(self):
        """
        Execute all events concurrently and wait for every one to finish.

        Returns:
            ChainResult with results in registration order
        """
        result = ChainResult(self._context)
        start = time.perf_counter()

        semaphore = None
        if self._max_parallelism is not None:
            semaphore = asyncio.Semaphore(self._max_parallelism)

        event_results = await asyncio.gather(
            *(self._run_event(event, semaphore) for event in list(self._events))
        )
        for event_result in event_results:
            result.add(event_result)

        result.finalize(
            success=result.failure_count == 0,
            total_precision_score=calculate_precision_score(event_results),
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )
        logger.debug("Parallel run finished: %d events, %d failures",
                     result.total_count, result.failure_count)
        return result

    async def execute(self):
        """
        Run all events and raise if any of them failed.

        Raises:
            EventChainError: Carrying the first failure's message and the result
        """
        result = await self.execute_with_results()

        if not result.success:
            first_failure = result.first_failure
            raise EventChainError(first_failure.error_message or "Event chain execution failed",
                                  result)
        return result

    def __repr__(self):
        return (f"ParallelEventChain(events={len(self._events)}, "
                f"max_parallelism={self._max_parallelism})")
