"""
EventChain - Orchestrates sequential execution of events through middleware.
"""

import enum
import inspect
import logging
import time

from .context import ContextKey, EventContext
from .errors import EventChainError
from .event import event_name
from .result import ChainResult, EventResult, calculate_precision_score

logger = logging.getLogger(__name__)

# Events in a CUSTOM chain set this flag to report domain-specific success.
CUSTOM_SUCCESS = ContextKey('custom_success_criteria', bool)


class FaultTolerance(enum.Enum):
    """Enumeration of fault tolerance modes for event chains."""
    STRICT = "strict"            # Any failure stops the chain
    LENIENT = "lenient"          # Failures are recorded, chain continues
    BEST_EFFORT = "best_effort"  # All events attempted regardless of failures
    CUSTOM = "custom"            # User-defined continuation and success rules


class FaultTolerancePolicy:
    """
    Decides whether a run continues after a failure and what overall
    success means for the run.

    Args:
        mode: FaultTolerance mode
        continuation: CUSTOM only. Called as continuation(event_result, context)
            after each failure; return True to keep going. Without one,
            a CUSTOM chain stops at the first failure.
        success_criteria: CUSTOM only. Called as success_criteria(chain_result)
            once the run is over. Defaults to reading CUSTOM_SUCCESS from the
            context (True when unset).
    """

    def __init__(self, mode=FaultTolerance.STRICT, continuation=None, success_criteria=None):
        self.mode = FaultTolerance(mode)
        self.continuation = continuation
        self.success_criteria = success_criteria

    def should_continue(self, event_result, context):
        """Consulted only after a failed EventResult."""
        if self.mode is FaultTolerance.STRICT:
            return False
        if self.mode in (FaultTolerance.LENIENT, FaultTolerance.BEST_EFFORT):
            return True
        if self.continuation is None:
            return False
        return bool(self.continuation(event_result, context))

    def is_successful(self, chain_result):
        """Evaluated once, after the last event has run."""
        if self.mode is FaultTolerance.STRICT:
            return chain_result.failure_count == 0
        if self.mode is FaultTolerance.LENIENT:
            return chain_result.total_count == 0 or chain_result.success_count > 0
        if self.mode is FaultTolerance.BEST_EFFORT:
            # An empty BEST_EFFORT run is unsuccessful, unlike LENIENT.
            return chain_result.total_count > 0
        if self.success_criteria is not None:
            return bool(self.success_criteria(chain_result))
        return chain_result.context.get_or_default(CUSTOM_SUCCESS, True)

    def __repr__(self):
        return f"FaultTolerancePolicy({self.mode.value})"


async def invoke_event(event, context):
    """Base delegate of every pipeline: run the event, awaiting if needed."""
    result = event.execute(context)
    if inspect.isawaitable(result):
        result = await result
    return result


class EventChain:
    """
    Orchestrates sequential execution of events through a middleware pipeline.

    The chain manages:
    - Sequential event execution, in registration order
    - Middleware pipeline (LIFO order)
    - Continuation and overall success through its fault tolerance policy
    - One shared context for the chain's lifetime

    Example:
        chain = (EventChain.lenient()
            .add_event(LoadCustomer())
            .add_event(ScoreCustomer())
            .use_middleware(TimingMiddleware()))

        result = await chain.execute_with_results()
        print(result.total_precision_score, result.get_grade())
    """

    def __init__(self, fault_tolerance=FaultTolerance.STRICT, continuation=None,
                 success_criteria=None, context=None):
        """
        Initialize an EventChain.

        Args:
            fault_tolerance: How to handle failures (default: STRICT)
            continuation: Continuation predicate for CUSTOM mode
            success_criteria: Overall success rule for CUSTOM mode
            context: Optional EventContext to use instead of a fresh one
        """
        self._events = []
        self._middleware = []
        self._policy = FaultTolerancePolicy(fault_tolerance, continuation, success_criteria)
        self._context = context if context is not None else EventContext()
        self._pipeline = None
        self._pipeline_built = False

    @classmethod
    def strict(cls):
        """Any event failure stops the chain immediately."""
        return cls(FaultTolerance.STRICT)

    @classmethod
    def lenient(cls):
        """Failures are recorded but the chain continues."""
        return cls(FaultTolerance.LENIENT)

    @classmethod
    def best_effort(cls):
        """All events are attempted; read the precision score for quality."""
        return cls(FaultTolerance.BEST_EFFORT)

    @classmethod
    def custom(cls, continuation, success_criteria=None):
        """
        Continuation after each failure is decided by a callback.

        Args:
            continuation: continuation(event_result, context) -> bool
            success_criteria: Optional success_criteria(chain_result) -> bool
        """
        return cls(FaultTolerance.CUSTOM, continuation, success_criteria)

    @property
    def fault_tolerance(self):
        return self._policy.mode

    @property
    def policy(self):
        return self._policy

    def add_event(self, event):
        """
        Add an event to the chain.

        Args:
            event: Any object with an execute(context) method

        Returns:
            self (for method chaining)
        """
        self._events.append(event)
        return self

    def use_middleware(self, middleware):
        """
        Add middleware to the chain.
        Middleware executes in LIFO order: the last one registered is the
        outermost wrapper and sees each call first.

        Args:
            middleware: Callable taking the next delegate and returning a new
                one (Middleware instances qualify)

        Returns:
            self (for method chaining)
        """
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")
        self._middleware.append(middleware)
        self._pipeline_built = False  # Invalidate cached pipeline
        return self

    def get_context(self):
        """Return the shared context used by every run of this chain."""
        return self._context

    async def execute_with_results(self):
        """
        Execute all events through the middleware pipeline.

        Exceptions raised by an event or a middleware are turned into failed
        results for that event; they never escape the run.

        Returns:
            ChainResult with every executed event's result
        """
        # Build pipeline once and cache it
        if not self._pipeline_built:
            self._pipeline = self._build_pipeline()
            self._pipeline_built = True

        pipeline = self._pipeline
        context = self._context
        result = ChainResult(context)
        start = time.perf_counter()

        for event in list(self._events):
            name = event_name(event)
            try:
                event_result = await pipeline(event, context)
                if not isinstance(event_result, EventResult):
                    raise TypeError(f"{name} returned {type(event_result).__name__}, "
                                    f"expected EventResult")
            except Exception as exc:
                logger.warning("Event %s raised %s: %s", name, type(exc).__name__, exc,
                               exc_info=True)
                event_result = EventResult.create_failure(name, f"Exception: {exc}")

            result.add(event_result)
            logger.debug("Event %s finished: success=%s score=%.1f",
                         name, event_result.success, event_result.precision_score)

            if not event_result.success and not self._policy.should_continue(event_result, context):
                logger.debug("Chain stopped after %s (%s)", name, self._policy.mode.value)
                break

        elapsed_ms = (time.perf_counter() - start) * 1000
        result.finalize(
            success=self._policy.is_successful(result),
            total_precision_score=calculate_precision_score(result.event_results),
            execution_time_ms=elapsed_ms,
        )
        return result

    async def execute(self):
        """
        Legacy entry point: run the chain and raise if a STRICT run failed.

        Returns:
            ChainResult of the run

        Raises:
            EventChainError: If the mode is STRICT and the run was unsuccessful
        """
        result = await self.execute_with_results()

        if not result.success and self._policy.mode is FaultTolerance.STRICT:
            first_failure = result.first_failure
            message = (first_failure.error_message if first_failure is not None
                       and first_failure.error_message else "Event chain execution failed")
            raise EventChainError(message, result)

        return result

    def _build_pipeline(self):
        """
        Build the middleware pipeline.
        Middleware wraps in LIFO order (reverse of registration).

        Returns:
            Coroutine function executing an event through all middleware
        """
        pipeline = invoke_event

        # Wrap in middleware (reverse order for LIFO)
        for middleware in reversed(self._middleware):
            pipeline = middleware(pipeline)

        return pipeline

    def clear_events(self):
        """Remove all events from the chain."""
        self._events.clear()
        return self

    def clear_middleware(self):
        """Remove all middleware from the chain."""
        self._middleware.clear()
        self._pipeline_built = False
        return self

    def reset(self):
        """Clear both events and middleware."""
        self.clear_events()
        self.clear_middleware()
        return self

    def event_count(self):
        """Return the number of events in the chain."""
        return len(self._events)

    def middleware_count(self):
        """Return the number of middleware in the chain."""
        return len(self._middleware)

    def __repr__(self):
        return (f"EventChain(events={len(self._events)}, "
                f"middleware={len(self._middleware)}, "
                f"fault_tolerance={self._policy.mode.value})")
