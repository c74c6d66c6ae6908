"""
Middleware - Cross-cutting concerns that wrap event execution.

A middleware is any callable that takes the next delegate in the pipeline and
returns a new delegate. Delegates are coroutine functions with the signature
``delegate(event, context) -> EventResult``. The Middleware base class
implements that contract, so subclasses only write execute().

Included middleware:
- Timing: per-event durations recorded in the context
- Logging: callback or logger reporting around each event
- Caching: unconditional, expiring, or success-only result caches
- Rate limiting: sliding-window limits (global, per user, per event type)
- Authorization: authentication, role and permission checks
- Validation: context preconditions, type checks, invariants
- Error handling: fault-to-result mapping and retry with delay
"""

import asyncio
import logging
import time
from collections import deque

from .event import event_name
from .result import EventResult

logger = logging.getLogger(__name__)


class Middleware:
    """
    Base class for middleware that wraps event execution.

    Middleware executes in LIFO order (reverse of registration) - like gift
    wrapping. The last middleware registered sees each call first.
    """

    def __call__(self, next_delegate):
        """Wrap next_delegate, producing the delegate for this layer."""
        async def delegate(event, context):
            return await self.execute(event, context, lambda ctx: next_delegate(event, ctx))
        return delegate

    async def execute(self, event, context, next_callable):
        """
        Execute the middleware logic.

        Args:
            event: The event being executed
            context: EventContext containing shared state
            next_callable: Coroutine function continuing the pipeline;
                call it with the context and await the result. Not calling
                it short-circuits the event.

        Returns:
            EventResult from the next callable (or a replacement)

        Example:
            async def execute(self, event, context, next_callable):
                print(f"Before {event_name(event)}")
                result = await next_callable(context)
                print(f"After {event_name(event)}")
                return result
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement execute()")

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __str__(self):
        return self.__class__.__name__


def _elapsed_ms(start):
    return (time.perf_counter() - start) * 1000


class TimingMiddleware(Middleware):
    """
    Record how long each event takes.

    Sets in context:
        - timings_key (default 'event_timings'): dict of event name -> ms
    """

    def __init__(self, threshold_ms=None, alert=None, timings_key='event_timings'):
        """
        Initialize the TimingMiddleware.

        Args:
            threshold_ms: Optional duration above which alert is called
            alert: alert(event_name, duration_ms), called for slow events
            timings_key: Context key for the timings dictionary
        """
        self.threshold_ms = threshold_ms
        self.alert = alert
        self.timings_key = timings_key

    async def execute(self, event, context, next_callable):
        name = event_name(event)
        start = time.perf_counter()
        try:
            return await next_callable(context)
        finally:
            duration = _elapsed_ms(start)

            timings = context.get_or_default(self.timings_key, expected_type=dict)
            if timings is None:
                timings = {}
                context.set(self.timings_key, timings)
            timings[name] = duration

            if self.threshold_ms is not None and duration > self.threshold_ms:
                if self.alert is not None:
                    self.alert(name, duration)
                else:
                    logger.warning("Slow event %s: %.2fms (threshold %sms)",
                                   name, duration, self.threshold_ms)


class LoggingMiddleware(Middleware):
    """
    Report each event's name, duration and success to a callback.

    Faults are reported as unsuccessful and then re-raised; this middleware
    never swallows them.
    """

    def __init__(self, log_action):
        """
        Args:
            log_action: log_action(event_name, duration_ms, success)
        """
        self.log_action = log_action

    @classmethod
    def to_logger(cls, log=None, level=logging.INFO):
        """Log one line per event through a standard logger."""
        log = log or logger

        def log_action(name, duration_ms, success):
            status = "✓" if success else "✗"
            log.log(level, "[%s] %s - %.0fms", status, name, duration_ms)

        return cls(log_action)

    async def execute(self, event, context, next_callable):
        name = event_name(event)
        start = time.perf_counter()
        try:
            result = await next_callable(context)
        except Exception:
            self.log_action(name, _elapsed_ms(start), False)
            raise
        self.log_action(name, _elapsed_ms(start), result.success)
        return result


class DetailedLoggingMiddleware(Middleware):
    """Log the start of each event, then its outcome, score and error."""

    def __init__(self, log=None, level=logging.INFO):
        self.log = log or logger
        self.level = level

    async def execute(self, event, context, next_callable):
        name = event_name(event)
        self.log.log(self.level, "→ Starting %s...", name)

        start = time.perf_counter()
        result = await next_callable(context)

        status = "✓" if result.success else "✗"
        self.log.log(self.level, "[%s] %s - %.0fms - Score: %.1f%%",
                     status, name, _elapsed_ms(start), result.precision_score)
        if not result.success and result.error_message:
            self.log.log(self.level, "  Error: %s", result.error_message)
        return result


class CachingMiddleware(Middleware):
    """
    Cache event results by a caller-supplied key.

    A cache hit returns the stored result without running the inner
    pipeline at all.
    """

    def __init__(self, key_generator, store=None, expiration_seconds=None,
                 success_only=False, clock=time.monotonic):
        """
        Initialize the CachingMiddleware.

        Args:
            key_generator: key_generator(event, context) -> hashable key
            store: Optional dict of key -> EventResult, shareable between chains
            expiration_seconds: Entry lifetime; None caches forever
            success_only: Never store failed results
            clock: Monotonic time source in seconds
        """
        self.key_generator = key_generator
        self.store = store if store is not None else {}
        self.expiration_seconds = expiration_seconds
        self.success_only = success_only
        self.clock = clock
        self.hits = 0
        self.misses = 0
        self._expires_at = {}

    @classmethod
    def create(cls, key_generator, store=None):
        """Cache every result, successful or not."""
        return cls(key_generator, store)

    @classmethod
    def with_expiration(cls, key_generator, expiration_seconds=300, clock=time.monotonic):
        """Cache every result for a limited time."""
        return cls(key_generator, expiration_seconds=expiration_seconds, clock=clock)

    @classmethod
    def success_only_cache(cls, key_generator, store=None):
        """Cache successful results only, so failures are always retried."""
        return cls(key_generator, store, success_only=True)

    @staticmethod
    def simple_key(event, context):
        """Key by event name alone."""
        return event_name(event)

    @staticmethod
    def context_key(context_key):
        """Key by event name plus the value of one context entry."""
        def key_generator(event, context):
            return f"{event_name(event)}:{context.get_or_default(context_key)}"
        return key_generator

    def _lookup(self, key):
        if key not in self.store:
            return None
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self.clock():
            del self.store[key]
            del self._expires_at[key]
            return None
        return self.store[key]

    async def execute(self, event, context, next_callable):
        key = self.key_generator(event, context)

        cached = self._lookup(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        result = await next_callable(context)

        if self.success_only and not result.success:
            return result

        self.store[key] = result
        if self.expiration_seconds is not None:
            self._expires_at[key] = self.clock() + self.expiration_seconds
        return result

    def clear(self):
        """Drop every cached entry."""
        self.store.clear()
        self._expires_at.clear()


class RateLimitingMiddleware(Middleware):
    """
    Sliding-window rate limit shared by every event in the chain.

    Calls over budget fail immediately with score 0; the wrapped event does
    not run.
    """

    GLOBAL_BUCKET = '*'

    def __init__(self, max_requests, window_seconds, clock=time.monotonic):
        """
        Args:
            max_requests: Calls allowed per window
            window_seconds: Window length in seconds
            clock: Monotonic time source in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests = {}
        self._windows = {}

    @classmethod
    def per_user(cls, max_requests, window_seconds, user_id_key='user_id', clock=time.monotonic):
        """Separate window per user, identified by a context key."""
        return PerUserRateLimitingMiddleware(max_requests, window_seconds, user_id_key, clock)

    @classmethod
    def per_event_type(cls, limits, clock=time.monotonic):
        """
        Separate window per event name.

        Args:
            limits: dict of event name -> (max_requests, window_seconds).
                Events not listed are not limited.
        """
        return PerEventTypeRateLimitingMiddleware(limits, clock)

    def resolve_limit(self, event, context):
        """
        Returns:
            (bucket, max_requests, window_seconds), or None for no limit
        """
        return self.GLOBAL_BUCKET, self.max_requests, self.window_seconds

    def rejection_message(self, bucket, max_requests, window_seconds):
        return f"Rate limit exceeded: {max_requests} requests per {window_seconds} seconds"

    @property
    def bucket_count(self):
        """Number of buckets holding requests from the current window."""
        return len(self._requests)

    def _drop_idle_buckets(self, now):
        idle = [bucket for bucket, requests in self._requests.items()
                if not requests or requests[-1] < now - self._windows[bucket]]
        for bucket in idle:
            del self._requests[bucket]
            del self._windows[bucket]

    def _admit(self, bucket, max_requests, window_seconds):
        now = self.clock()
        self._drop_idle_buckets(now)
        window_start = now - window_seconds
        requests = self._requests.setdefault(bucket, deque())
        self._windows[bucket] = window_seconds

        while requests and requests[0] < window_start:
            requests.popleft()

        if len(requests) >= max_requests:
            return False

        requests.append(now)
        return True

    async def execute(self, event, context, next_callable):
        limit = self.resolve_limit(event, context)
        if limit is None:
            return await next_callable(context)

        bucket, max_requests, window_seconds = limit
        if not self._admit(bucket, max_requests, window_seconds):
            logger.info("Rate limit hit for %s (bucket %s)", event_name(event), bucket)
            return EventResult.create_failure(
                event_name(event),
                self.rejection_message(bucket, max_requests, window_seconds),
                precision_score=0,
            )

        return await next_callable(context)


class PerUserRateLimitingMiddleware(RateLimitingMiddleware):
    """Rate limit keyed by the user id stored in the context."""

    def __init__(self, max_requests, window_seconds, user_id_key='user_id', clock=time.monotonic):
        super().__init__(max_requests, window_seconds, clock)
        self.user_id_key = user_id_key

    def resolve_limit(self, event, context):
        user_id = context.get_or_default(self.user_id_key, 'anonymous', expected_type=str)
        return user_id, self.max_requests, self.window_seconds

    def rejection_message(self, bucket, max_requests, window_seconds):
        return f"Rate limit exceeded for user {bucket}"


class PerEventTypeRateLimitingMiddleware(RateLimitingMiddleware):
    """Rate limit keyed by event name, with a separate budget per name."""

    def __init__(self, limits, clock=time.monotonic):
        super().__init__(0, 0, clock)
        self.limits = dict(limits)

    def resolve_limit(self, event, context):
        name = event_name(event)
        if name not in self.limits:
            return None
        max_requests, window_seconds = self.limits[name]
        return name, max_requests, window_seconds


class AuthorizationMiddleware(Middleware):
    """
    Check a permission predicate before the event runs.

    Unauthorized calls fail with score 0 and the event does not run.
    """

    def __init__(self, permission_checker, unauthorized_message="Unauthorized access"):
        """
        Args:
            permission_checker: permission_checker(context, event) -> bool
            unauthorized_message: Error message on refusal
        """
        self.permission_checker = permission_checker
        self.unauthorized_message = unauthorized_message

    @classmethod
    def require_authentication(cls, is_authenticated):
        """
        Args:
            is_authenticated: is_authenticated(context) -> bool
        """
        return cls(lambda context, event: is_authenticated(context), "Authentication required")

    @classmethod
    def require_role(cls, required_role, role_key='user_role'):
        """Require the context's role entry to equal required_role."""
        def has_role(context, event):
            return context.get_or_default(role_key, expected_type=str) == required_role
        return cls(has_role, f"Requires role: {required_role}")

    @classmethod
    def require_attribute(cls, attribute, validator):
        """
        Authorize events that declare a class attribute.

        Events without the attribute pass through; for the rest,
        validator(attribute_value, context) must return True.
        """
        def check(context, event):
            if not hasattr(event, attribute):
                return True
            return validator(getattr(event, attribute), context)
        return cls(check, "Authorization check failed")

    async def execute(self, event, context, next_callable):
        if not self.permission_checker(context, event):
            return EventResult.create_failure(event_name(event), self.unauthorized_message,
                                              precision_score=0)
        return await next_callable(context)


class ValidationMiddleware(Middleware):
    """
    Validate the context before the event runs.

    The validator returns (is_valid, error_message); an invalid context fails
    the event with score 0 without running it.
    """

    def __init__(self, validator):
        """
        Args:
            validator: validator(event, context) -> (bool, str or None)
        """
        self.validator = validator

    @classmethod
    def require_context_keys(cls, *required_keys):
        def validator(event, context):
            missing = [key for key in required_keys if not context.contains_key(key)]
            if missing:
                return False, f"Missing required context keys: {', '.join(missing)}"
            return True, None
        return cls(validator)

    @classmethod
    def validate_context_types(cls, type_requirements):
        """
        Args:
            type_requirements: dict of context key -> required type.
                A stored None is accepted for any type.
        """
        def validator(event, context):
            for key, required_type in type_requirements.items():
                if not context.contains_key(key):
                    return False, f"Missing required context key: {key}"
                value = context.get(key)
                if value is not None and not isinstance(value, required_type):
                    return False, (f"Context key '{key}' has wrong type. "
                                   f"Expected: {required_type.__name__}, "
                                   f"Got: {type(value).__name__}")
            return True, None
        return cls(validator)

    @classmethod
    def business_rules(cls, *rules):
        """Each rule is rule(context) -> (bool, str or None); first failure wins."""
        def validator(event, context):
            for rule in rules:
                is_valid, error_message = rule(context)
                if not is_valid:
                    return False, error_message or "Business rule validation failed"
            return True, None
        return cls(validator)

    @classmethod
    def enforce_invariants(cls, pre_condition, post_condition=None):
        """Pre- and optional post-condition checks around the event."""
        return InvariantMiddleware(pre_condition, post_condition)

    async def execute(self, event, context, next_callable):
        is_valid, error_message = self.validator(event, context)
        if not is_valid:
            return EventResult.create_failure(event_name(event),
                                              error_message or "Validation failed",
                                              precision_score=0)
        return await next_callable(context)


class InvariantMiddleware(Middleware):
    """
    Check a pre-condition before the event and a post-condition after it.

    pre_condition(context) and post_condition(context, result) both return
    (is_valid, error_message). A failed post-condition replaces the event's
    result with a failure.
    """

    def __init__(self, pre_condition, post_condition=None):
        self.pre_condition = pre_condition
        self.post_condition = post_condition

    async def execute(self, event, context, next_callable):
        name = event_name(event)

        is_valid, error_message = self.pre_condition(context)
        if not is_valid:
            return EventResult.create_failure(name, f"Pre-condition failed: {error_message}",
                                              precision_score=0)

        result = await next_callable(context)

        if self.post_condition is not None:
            is_valid, error_message = self.post_condition(context, result)
            if not is_valid:
                return EventResult.create_failure(name, f"Post-condition failed: {error_message}",
                                                  precision_score=0)
        return result


class ErrorHandlingMiddleware(Middleware):
    """
    Fault boundary around the inner pipeline.

    Exceptions from inner layers are handed to error_handler, whose
    EventResult is returned in place of the fault.
    """

    def __init__(self, error_handler):
        """
        Args:
            error_handler: error_handler(exception, event) -> EventResult
        """
        self.error_handler = error_handler

    @classmethod
    def with_logging(cls, log_action=None):
        """
        Report the fault, then return a failure result.

        Args:
            log_action: Optional log_action(event_name, exception); defaults to
                logging the traceback through this module's logger
        """
        def handler(exc, event):
            name = event_name(event)
            if log_action is not None:
                log_action(name, exc)
            else:
                logger.error("Event %s raised %s", name, exc, exc_info=exc)
            return EventResult.create_failure(name, f"Exception: {exc}", precision_score=0)
        return cls(handler)

    @classmethod
    def with_retry(cls, max_retries=3, delay_ms=100):
        """Re-run the inner pipeline when it raises. See RetryMiddleware."""
        return RetryMiddleware(max_retries, delay_ms)

    async def execute(self, event, context, next_callable):
        try:
            return await next_callable(context)
        except Exception as exc:
            return self.error_handler(exc, event)


class RetryMiddleware(Middleware):
    """
    Retry the inner pipeline when it raises.

    Up to max_retries extra attempts are made, sleeping delay_ms between
    them. Returned failures are not retried; only exceptions are. Once
    retries run out, a failure carrying the last exception's message is
    returned.
    """

    def __init__(self, max_retries=3, delay_ms=100, sleep=asyncio.sleep):
        self.max_retries = max_retries
        self.delay_ms = delay_ms
        self.sleep = sleep
        self.attempts = 0

    async def execute(self, event, context, next_callable):
        last_exception = None

        for attempt in range(self.max_retries + 1):
            self.attempts += 1
            try:
                return await next_callable(context)
            except Exception as exc:
                last_exception = exc
                logger.debug("Attempt %d of %s failed: %s", attempt + 1, event_name(event), exc)
                if attempt < self.max_retries:
                    await self.sleep(self.delay_ms / 1000)

        return EventResult.create_failure(
            event_name(event),
            f"Failed after {self.max_retries} retries: {last_exception}",
            precision_score=0,
        )
