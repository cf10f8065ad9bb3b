"""Shared test doubles for the entitlement tests"""

import asyncio
from datetime import datetime, timedelta, timezone

from entitlements.models import Failure, FailureKind, RemoteStatus, SubscriptionStatus


FIRST_LAUNCH = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
TRIAL_LENGTH = timedelta(days=15)
IDENTITY = "a@b.com"


class MutableClock:
    """Wall clock that tests can move"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class MonotonicClock:
    """Monotonic clock that tests can move"""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ControlledRemote:
    """
    Remote client whose lookups stay pending until the test completes them.

    Lets tests choose the order in which overlapping rechecks finish.
    """

    def __init__(self):
        self.calls = []

    async def fetch_status(self, identity):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((identity, future))
        return await future

    def complete(self, index, result):
        self.calls[index][1].set_result(result)

    async def wait_for_calls(self, count, attempts=200):
        for _ in range(attempts):
            if len(self.calls) >= count:
                return
            await asyncio.sleep(0.01)
        raise AssertionError(f"Expected {count} remote calls, saw {len(self.calls)}")


def remote_status(subscribed=True, status=SubscriptionStatus.ACTIVE, period_end=None, plan="monthly"):
    return RemoteStatus(
        subscribed=subscribed,
        status=SubscriptionStatus(status),
        plan=plan,
        current_period_end=period_end,
    )


def network_failure(message="Timed out after 10.0s"):
    return Failure(kind=FailureKind.NETWORK, message=message)
