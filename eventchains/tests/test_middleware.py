"""
Tests for the middleware library: timing, logging, caching, rate limiting,
authorization, validation and error handling.
"""

import logging
import unittest
from unittest.mock import AsyncMock, MagicMock

from eventchains import (
    AuthorizationMiddleware,
    CachingMiddleware,
    ChainableEvent,
    DetailedLoggingMiddleware,
    ErrorHandlingMiddleware,
    EventChain,
    EventResult,
    LoggingMiddleware,
    RateLimitingMiddleware,
    RetryMiddleware,
    TimingMiddleware,
    ValidationMiddleware,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingEvent(ChainableEvent):
    """Counts its own invocations and leaves a side effect in the context."""

    def __init__(self, should_fail=False, score=100.0):
        self.should_fail = should_fail
        self.score = score
        self.calls = 0

    def execute(self, context):
        self.calls += 1
        context.increment('side_effects')
        if self.should_fail:
            return self.failure("Test failure")
        return self.success({'call': self.calls}, self.score)


class FlakyEvent(ChainableEvent):
    """Raises a given number of times before succeeding."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def execute(self, context):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.success()


class AdminOnlyEvent(CountingEvent):
    required_permission = 'admin'


async def run_once(event, *middleware, mode=EventChain.lenient):
    chain = mode().add_event(event)
    for mw in middleware:
        chain.use_middleware(mw)
    return await chain.execute_with_results()


class TestTimingMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test TimingMiddleware functionality."""

    async def test_records_duration_per_event(self):
        chain = (EventChain.lenient()
            .add_event(CountingEvent())
            .add_event(FlakyEvent(failures=0))
            .use_middleware(TimingMiddleware()))

        result = await chain.execute_with_results()

        timings = result.context.get('event_timings', dict)
        self.assertEqual(set(timings), {'CountingEvent', 'FlakyEvent'})
        self.assertTrue(all(duration >= 0 for duration in timings.values()))

    async def test_threshold_alert(self):
        alert = MagicMock()
        await run_once(CountingEvent(), TimingMiddleware(threshold_ms=-1, alert=alert))
        alert.assert_called_once()
        self.assertEqual(alert.call_args[0][0], 'CountingEvent')

    async def test_records_duration_when_event_raises(self):
        result = await run_once(FlakyEvent(failures=1), TimingMiddleware())
        self.assertFalse(result.success)
        self.assertIn('FlakyEvent', result.context.get('event_timings'))


class TestLoggingMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test LoggingMiddleware functionality."""

    async def test_callback_receives_outcome(self):
        log_action = MagicMock()
        await run_once(CountingEvent(should_fail=True), LoggingMiddleware(log_action))

        name, duration, success = log_action.call_args[0]
        self.assertEqual(name, 'CountingEvent')
        self.assertGreaterEqual(duration, 0)
        self.assertFalse(success)

    async def test_fault_is_logged_then_rethrown(self):
        log_action = MagicMock()
        middleware = LoggingMiddleware(log_action)
        delegate = middleware(AsyncMock(side_effect=RuntimeError("kaput")))

        with self.assertRaises(RuntimeError):
            await delegate(CountingEvent(), None)

        self.assertFalse(log_action.call_args[0][2])

    async def test_fault_reaches_chain_boundary(self):
        log_action = MagicMock()
        result = await run_once(FlakyEvent(failures=1), LoggingMiddleware(log_action))

        self.assertEqual(result.event_results[0].error_message, "Exception: attempt 1 failed")
        log_action.assert_called_once()

    async def test_to_logger(self):
        with self.assertLogs('eventchains.middleware', level='INFO') as logs:
            await run_once(CountingEvent(), LoggingMiddleware.to_logger())
        self.assertIn('CountingEvent', logs.output[0])

    async def test_detailed_logging_reports_errors(self):
        log = logging.getLogger('eventchains.tests.detailed')
        with self.assertLogs(log, level='INFO') as logs:
            await run_once(CountingEvent(should_fail=True), DetailedLoggingMiddleware(log))

        output = "\n".join(logs.output)
        self.assertIn('Starting CountingEvent', output)
        self.assertIn('Score: 0.0%', output)
        self.assertIn('Error: Test failure', output)


class TestCachingMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test CachingMiddleware functionality."""

    async def test_hit_skips_inner_pipeline(self):
        event = CountingEvent()
        cache = CachingMiddleware.create(CachingMiddleware.simple_key)

        first = await run_once(event, cache)
        second = await run_once(event, cache)

        self.assertEqual(event.calls, 1)
        self.assertIs(first.event_results[0], second.event_results[0])
        self.assertEqual((cache.hits, cache.misses), (1, 1))
        self.assertFalse(second.context.contains_key('side_effects'))

    async def test_unconditional_cache_keeps_failures(self):
        event = CountingEvent(should_fail=True)
        cache = CachingMiddleware.create(CachingMiddleware.simple_key)

        await run_once(event, cache)
        result = await run_once(event, cache)

        self.assertEqual(event.calls, 1)
        self.assertFalse(result.event_results[0].success)

    async def test_success_only_retries_failures(self):
        store = {}
        failing = CountingEvent(should_fail=True)
        cache = CachingMiddleware.success_only_cache(CachingMiddleware.simple_key, store)

        await run_once(failing, cache)
        await run_once(failing, cache)
        self.assertEqual(failing.calls, 2)
        self.assertEqual(store, {})

        succeeding = CountingEvent()
        await run_once(succeeding, cache)
        result = await run_once(succeeding, cache)
        self.assertEqual(succeeding.calls, 1)
        self.assertTrue(result.event_results[0].success)
        self.assertIn('CountingEvent', store)

    async def test_expiration(self):
        clock = FakeClock()
        event = CountingEvent()
        cache = CachingMiddleware.with_expiration(CachingMiddleware.simple_key, 60, clock=clock)

        await run_once(event, cache)
        clock.advance(59)
        await run_once(event, cache)
        self.assertEqual(event.calls, 1)

        clock.advance(1)
        await run_once(event, cache)
        self.assertEqual(event.calls, 2)

    async def test_context_key_generator(self):
        event = CountingEvent()
        cache = CachingMiddleware.create(CachingMiddleware.context_key('customer'))

        for customer in ('a', 'b', 'a'):
            chain = EventChain().add_event(event).use_middleware(cache)
            chain.get_context().set('customer', customer)
            await chain.execute_with_results()

        self.assertEqual(event.calls, 2)
        self.assertEqual(set(cache.store), {'CountingEvent:a', 'CountingEvent:b'})


class TestRateLimitingMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test RateLimitingMiddleware functionality."""

    async def test_third_call_in_window_is_rejected(self):
        clock = FakeClock()
        limiter = RateLimitingMiddleware(max_requests=2, window_seconds=60, clock=clock)
        events = [CountingEvent() for _ in range(3)]

        chain = EventChain.lenient().use_middleware(limiter)
        for event in events:
            chain.add_event(event)
        result = await chain.execute_with_results()

        third = result.event_results[2]
        self.assertFalse(third.success)
        self.assertEqual(third.precision_score, 0.0)
        self.assertEqual(third.error_message, "Rate limit exceeded: 2 requests per 60 seconds")
        self.assertEqual(events[2].calls, 0)
        self.assertEqual(result.context.get('side_effects'), 2)

    async def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimitingMiddleware(1, 10, clock=clock)
        event = CountingEvent()

        await run_once(event, limiter)
        rejected = await run_once(event, limiter)
        self.assertFalse(rejected.success)

        clock.advance(11)
        accepted = await run_once(event, limiter)
        self.assertTrue(accepted.success)
        self.assertEqual(event.calls, 2)

    async def test_per_user(self):
        clock = FakeClock()
        limiter = RateLimitingMiddleware.per_user(1, 60, clock=clock)

        async def call(user_id):
            chain = EventChain().add_event(CountingEvent()).use_middleware(limiter)
            if user_id is not None:
                chain.get_context().set('user_id', user_id)
            return (await chain.execute_with_results()).event_results[0]

        self.assertTrue((await call('alice')).success)
        self.assertTrue((await call('bob')).success)
        self.assertEqual((await call('alice')).error_message, "Rate limit exceeded for user alice")
        self.assertTrue((await call(None)).success)
        self.assertEqual((await call(None)).error_message,
                         "Rate limit exceeded for user anonymous")

    async def test_idle_user_buckets_are_dropped(self):
        clock = FakeClock()
        limiter = RateLimitingMiddleware.per_user(1, 60, clock=clock)

        for user_id in ('alice', 'bob', 'carol'):
            chain = EventChain().add_event(CountingEvent()).use_middleware(limiter)
            chain.get_context().set('user_id', user_id)
            await chain.execute_with_results()
        self.assertEqual(limiter.bucket_count, 3)

        clock.advance(61)
        chain = EventChain().add_event(CountingEvent()).use_middleware(limiter)
        chain.get_context().set('user_id', 'dave')
        result = await chain.execute_with_results()

        self.assertTrue(result.success)
        self.assertEqual(limiter.bucket_count, 1)

    async def test_per_event_type(self):
        clock = FakeClock()
        limiter = RateLimitingMiddleware.per_event_type({'AdminOnlyEvent': (1, 60)}, clock=clock)

        admin = AdminOnlyEvent()
        other = CountingEvent()
        chain = (EventChain.lenient()
            .add_event(admin).add_event(admin)
            .add_event(other).add_event(other)
            .use_middleware(limiter))
        result = await chain.execute_with_results()

        self.assertEqual([r.success for r in result.event_results], [True, False, True, True])
        self.assertEqual(admin.calls, 1)
        self.assertEqual(other.calls, 2)


class TestAuthorizationMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test AuthorizationMiddleware functionality."""

    async def test_unmet_permission_blocks_event(self):
        event = CountingEvent()
        result = await run_once(event, AuthorizationMiddleware(lambda ctx, evt: False))

        self.assertEqual(result.event_results[0].error_message, "Unauthorized access")
        self.assertEqual(event.calls, 0)

    async def test_require_authentication(self):
        middleware = AuthorizationMiddleware.require_authentication(
            lambda ctx: ctx.get_or_default('authenticated', False))

        result = await run_once(CountingEvent(), middleware)
        self.assertEqual(result.event_results[0].error_message, "Authentication required")

        chain = EventChain().add_event(CountingEvent()).use_middleware(middleware)
        chain.get_context().set('authenticated', True)
        self.assertTrue((await chain.execute_with_results()).success)

    async def test_require_role(self):
        chain = (EventChain()
            .add_event(CountingEvent())
            .use_middleware(AuthorizationMiddleware.require_role('admin')))
        chain.get_context().set('user_role', 'viewer')

        result = await chain.execute_with_results()
        self.assertEqual(result.event_results[0].error_message, "Requires role: admin")

    async def test_require_attribute(self):
        middleware = AuthorizationMiddleware.require_attribute(
            'required_permission',
            lambda permission, ctx: permission in ctx.get_or_default('permissions', []))

        chain = (EventChain.lenient()
            .add_event(CountingEvent())
            .add_event(AdminOnlyEvent())
            .use_middleware(middleware))
        result = await chain.execute_with_results()

        plain, admin = result.event_results
        self.assertTrue(plain.success)
        self.assertEqual(admin.error_message, "Authorization check failed")


class TestValidationMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test ValidationMiddleware functionality."""

    async def test_require_context_keys(self):
        event = CountingEvent()
        chain = (EventChain()
            .add_event(event)
            .use_middleware(ValidationMiddleware.require_context_keys('order', 'user', 'cart')))
        chain.get_context().set('user', 'u1')

        result = await chain.execute_with_results()

        self.assertEqual(result.event_results[0].error_message,
                         "Missing required context keys: order, cart")
        self.assertEqual(event.calls, 0)

    async def test_validate_context_types(self):
        middleware = ValidationMiddleware.validate_context_types({'amount': float, 'note': str})

        chain = EventChain().add_event(CountingEvent()).use_middleware(middleware)
        chain.get_context().set('amount', '12.5').set('note', None)
        result = await chain.execute_with_results()
        self.assertEqual(result.event_results[0].error_message,
                         "Context key 'amount' has wrong type. Expected: float, Got: str")

        chain = EventChain().add_event(CountingEvent()).use_middleware(middleware)
        chain.get_context().set('amount', 12.5)
        result = await chain.execute_with_results()
        self.assertEqual(result.event_results[0].error_message,
                         "Missing required context key: note")

    async def test_business_rules(self):
        middleware = ValidationMiddleware.business_rules(
            lambda ctx: (True, None),
            lambda ctx: (ctx.get_or_default('age', 0) >= 18, "Must be an adult"),
            lambda ctx: (False, None),
        )
        result = await run_once(CountingEvent(), middleware)
        self.assertEqual(result.event_results[0].error_message, "Must be an adult")

    async def test_invariants(self):
        pre = lambda ctx: (ctx.contains_key('balance'), "no balance")
        post = lambda ctx, result: (ctx.get('balance') >= 0, "overdrawn")

        class Withdraw(ChainableEvent):
            def execute(self, context):
                context.increment('balance', -50)
                return self.success()

        result = await run_once(Withdraw(), ValidationMiddleware.enforce_invariants(pre, post))
        self.assertEqual(result.event_results[0].error_message, "Pre-condition failed: no balance")

        chain = (EventChain()
            .add_event(Withdraw())
            .use_middleware(ValidationMiddleware.enforce_invariants(pre, post)))
        chain.get_context().set('balance', 20)
        result = await chain.execute_with_results()
        self.assertEqual(result.event_results[0].error_message, "Post-condition failed: overdrawn")


class TestErrorHandlingMiddleware(unittest.IsolatedAsyncioTestCase):
    """Test ErrorHandlingMiddleware and RetryMiddleware functionality."""

    async def test_custom_mapping(self):
        handler = lambda exc, event: EventResult.create_partial_success(
            type(event).__name__, f"recovered from {exc}", 40)

        result = await run_once(FlakyEvent(failures=1), ErrorHandlingMiddleware(handler),
                                mode=EventChain.strict)

        event_result = result.event_results[0]
        self.assertTrue(event_result.success)
        self.assertEqual(event_result.precision_score, 40.0)
        self.assertTrue(result.success)

    async def test_with_logging(self):
        log_action = MagicMock()
        result = await run_once(FlakyEvent(failures=1),
                                ErrorHandlingMiddleware.with_logging(log_action))

        name, exc = log_action.call_args[0]
        self.assertEqual(name, 'FlakyEvent')
        self.assertIsInstance(exc, ConnectionError)
        self.assertEqual(result.event_results[0].error_message, "Exception: attempt 1 failed")

    async def test_retry_until_success(self):
        sleep = AsyncMock()
        event = FlakyEvent(failures=2)
        retry = RetryMiddleware(max_retries=3, delay_ms=250, sleep=sleep)

        result = await run_once(event, retry)

        self.assertTrue(result.success)
        self.assertEqual(event.calls, 3)
        self.assertEqual(sleep.await_count, 2)
        sleep.assert_awaited_with(0.25)

    async def test_retry_exhausted(self):
        sleep = AsyncMock()
        event = FlakyEvent(failures=10)
        retry = RetryMiddleware(max_retries=2, delay_ms=1, sleep=sleep)

        result = await run_once(event, retry)

        event_result = result.event_results[0]
        self.assertEqual(event.calls, 3)
        self.assertEqual(sleep.await_count, 2)
        self.assertEqual(event_result.error_message, "Failed after 2 retries: attempt 3 failed")
        self.assertEqual(event_result.precision_score, 0.0)

    async def test_retry_does_not_repeat_declared_failures(self):
        event = CountingEvent(should_fail=True)
        await run_once(event, ErrorHandlingMiddleware.with_retry(max_retries=3, delay_ms=0))
        self.assertEqual(event.calls, 1)


if __name__ == '__main__':
    unittest.main()
