"""
Tests for the circuit breaker and the result cache.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from engagebrain.services.brain.runtime import CircuitBreaker, CircuitState, ResultCache
from engagebrain.services.models import BrainResponse, StrategyType


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _response(text="hello"):
    return BrainResponse(
        text=text,
        strategy=StrategyType.ANSWER,
        confidence=0.9,
        explanation="test",
        model="mock-provider-hybrid",
        version="3.1-rag",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=3, reset_timeout_seconds=60, clock=clock)


class TestCircuitBreaker:

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request() is True

    def test_opens_after_threshold(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_success_resets_consecutive_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_after_cool_down(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()

        clock.advance(59)
        assert breaker.state == CircuitState.OPEN

        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_allows_exactly_one_trial(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)

        assert breaker.allow_request() is True
        assert breaker.allow_request() is False

    def test_trial_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.allow_request() is True

    def test_trial_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED

    def test_failure_count_under_concurrent_failures(self, clock):
        breaker = CircuitBreaker(failure_threshold=1000, clock=clock)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: breaker.record_failure(), range(200)))

        assert breaker.failure_count == 200
        assert breaker.state == CircuitState.CLOSED


class TestResultCache:

    def test_miss_returns_none(self):
        assert ResultCache().get("missing") is None

    def test_evicts_least_recently_used(self):
        cache = ResultCache(max_entries=2)
        cache.set("a", _response("a"))
        cache.set("b", _response("b"))
        cache.get("a")
        cache.set("c", _response("c"))

        assert cache.get("b") is None
        assert cache.get("a").text == "a"
        assert cache.get("c").text == "c"
        assert len(cache) == 2

    def test_returns_copies(self):
        cache = ResultCache()
        cache.set("a", _response("original"))

        first = cache.get("a")
        first.text = "mutated"
        first.cache_hit = True

        second = cache.get("a")
        assert second.text == "original"
        assert second.cache_hit is False

    def test_clear(self):
        cache = ResultCache()
        cache.set("a", _response())
        cache.clear()
        assert len(cache) == 0
