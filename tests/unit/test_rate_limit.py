"""Tests for the shared rate-limit pause."""

from datetime import datetime, timedelta, timezone

import pytest

from gitpulse.integrations.bitbucket.rate_limit import RateLimitState


class FakeClock:
    """Manually advanced clock whose sleep moves time forward."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state(clock):
    return RateLimitState(max_wait_seconds=55, heartbeat_seconds=10, clock=clock, sleep=clock.sleep)


class TestRateLimitState:
    """Tests for RateLimitState."""

    def test_not_limited_initially(self, state):
        assert not state.is_rate_limited()
        assert state.wait_time() is None
        assert state.reset_at is None

    def test_set_limit(self, state, clock):
        state.set_limit(30)

        assert state.is_rate_limited()
        assert state.wait_time() == timedelta(seconds=30)
        assert state.reset_at == clock.now + timedelta(seconds=30)

    def test_shorter_limit_does_not_shorten_pause(self, state):
        state.set_limit(60)
        state.set_limit(5)

        assert state.wait_time() == timedelta(seconds=60)

    def test_longer_limit_extends_pause(self, state):
        state.set_limit(5)
        state.set_limit(60)

        assert state.wait_time() == timedelta(seconds=60)

    def test_pause_expires(self, state, clock):
        state.set_limit(10)
        clock.now += timedelta(seconds=10)

        assert not state.is_rate_limited()

    def test_clear(self, state):
        state.set_limit(30)
        state.clear()

        assert not state.is_rate_limited()

    @pytest.mark.asyncio
    async def test_wait_sleeps_in_heartbeat_chunks(self, state, clock):
        state.set_limit(25)

        await state.wait()

        assert clock.sleeps == [10, 10, 5]
        assert not state.is_rate_limited()

    @pytest.mark.asyncio
    async def test_wait_returns_immediately_when_not_limited(self, state, clock):
        await state.wait()

        assert clock.sleeps == []
