"""
Property-based tests for cooldown backoff, alert throttling and poll jitter.
"""

import random

from hypothesis import given, settings
from hypothesis import strategies as st

from restock_monitor.backoff import AlertThrottle, CooldownPolicy, jittered_interval_ms
from restock_monitor.config import MAX_COOLDOWN_MS


class FakeClock:
    """Manually advanced seconds clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCooldownGrowthProperty:
    """Property 9: cooldown doubles past the threshold and is capped at 30 minutes."""

    @given(
        base_ms=st.integers(min_value=1_000, max_value=600_000),
        max_retries=st.integers(min_value=0, max_value=5),
        failures=st.integers(min_value=1, max_value=30),
    )
    @settings(max_examples=100)
    def test_doubles_after_threshold_with_cap(self, base_ms: int, max_retries: int, failures: int) -> None:
        policy = CooldownPolicy(base_ms=base_ms, max_retries=max_retries)

        for _ in range(failures):
            policy.record_failure()

        doublings = max(0, failures - max_retries)
        expected = base_ms
        for _ in range(doublings):
            expected = min(expected * 2, MAX_COOLDOWN_MS)

        assert policy.state.consecutive_failures == failures
        assert policy.state.current_cooldown_ms == expected
        assert policy.state.current_cooldown_ms <= MAX_COOLDOWN_MS

    def test_no_growth_within_threshold(self) -> None:
        policy = CooldownPolicy(base_ms=300_000, max_retries=3)
        assert [policy.record_failure() for _ in range(5)] == [
            300_000, 300_000, 300_000, 600_000, 1_200_000,
        ]
        assert policy.record_failure() == MAX_COOLDOWN_MS
        assert policy.record_failure() == MAX_COOLDOWN_MS

    @given(failures=st.integers(min_value=1, max_value=20))
    @settings(max_examples=30)
    def test_success_resets_to_base(self, failures: int) -> None:
        policy = CooldownPolicy(base_ms=5_000, max_retries=1)
        for _ in range(failures):
            policy.record_failure()

        policy.record_success()

        assert policy.state.consecutive_failures == 0
        assert policy.state.current_cooldown_ms == 5_000
        assert policy.delay_seconds == 5.0

    def test_cap_cannot_exceed_thirty_minutes(self) -> None:
        policy = CooldownPolicy(base_ms=1_000_000, max_retries=0, cap_ms=10 * MAX_COOLDOWN_MS)
        policy.record_failure()
        policy.record_failure()
        assert policy.state.current_cooldown_ms == MAX_COOLDOWN_MS


class TestAlertThrottleProperty:
    """Property 10: restock alerts are rate limited per URL."""

    def test_second_alert_inside_window_is_blocked(self) -> None:
        clock = FakeClock()
        throttle = AlertThrottle(window_ms=600_000, clock=clock)

        assert throttle.allow("https://a.example")
        clock.advance(599)
        assert not throttle.allow("https://a.example")
        clock.advance(2)
        assert throttle.allow("https://a.example")

    @given(urls=st.lists(st.text(min_size=1, max_size=20), min_size=1, max_size=10, unique=True))
    @settings(max_examples=50)
    def test_urls_are_throttled_independently(self, urls: list[str]) -> None:
        throttle = AlertThrottle(window_ms=60_000, clock=FakeClock())
        assert all(throttle.allow(url) for url in urls)
        assert not any(throttle.allow(url) for url in urls)

    def test_blocked_call_does_not_extend_window(self) -> None:
        clock = FakeClock()
        throttle = AlertThrottle(window_ms=10_000, clock=clock)
        throttle.allow("u")
        clock.advance(5)
        assert not throttle.allow("u")
        assert throttle.last_sent("u") == 1000.0


class TestJitterProperty:
    """Property 11: jittered delay stays within base +/- jitter and above the floor."""

    @given(
        base_ms=st.integers(min_value=0, max_value=300_000),
        jitter_ms=st.integers(min_value=0, max_value=100_000),
        seed=st.integers(min_value=0, max_value=2**32),
    )
    @settings(max_examples=100)
    def test_bounds(self, base_ms: int, jitter_ms: int, seed: int) -> None:
        delay = jittered_interval_ms(base_ms, jitter_ms, rng=random.Random(seed))
        assert delay >= 5_000
        assert delay <= max(5_000, base_ms + jitter_ms)
        assert delay >= min(max(5_000, base_ms - jitter_ms), max(5_000, base_ms + jitter_ms))

    def test_floor_applies_to_small_intervals(self) -> None:
        assert jittered_interval_ms(1_000, 500, rng=random.Random(1)) == 5_000

    @given(floor_ms=st.integers(min_value=-10_000, max_value=4_999), seed=st.integers(min_value=0, max_value=2**32))
    @settings(max_examples=30)
    def test_floor_below_minimum_is_raised(self, floor_ms: int, seed: int) -> None:
        delay = jittered_interval_ms(0, 1_000, floor_ms=floor_ms, rng=random.Random(seed))
        assert delay == 5_000
