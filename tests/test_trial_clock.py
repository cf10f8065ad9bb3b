#!/usr/bin/env python3
"""
Trial Clock Tests

Covers the trial window derived from the first launch date:
- Membership and days remaining across the window
- Exact expiry boundary
- Fail-closed behaviour when the first launch date is missing or corrupt
"""

from datetime import timedelta

import pytest

from entitlements.errors import StoreFailure
from entitlements.trial_clock import FirstLaunchStore, TrialClock, TrialStatus
from tests.helpers import FIRST_LAUNCH, TRIAL_LENGTH, MutableClock


@pytest.fixture
def trial_at(first_launch_store):
    """Build a trial clock at an offset from first launch"""
    def build(offset: timedelta) -> TrialClock:
        return TrialClock(first_launch_store, TRIAL_LENGTH, now=MutableClock(FIRST_LAUNCH + offset))
    return build


class TestFirstLaunchStore:
    """Tests for the write-once first launch date"""

    def test_missing_file_returns_none(self, temp_dir):
        store = FirstLaunchStore(temp_dir / "first_launch.json")
        assert store.get() is None

    def test_initialize_writes_once(self, temp_dir):
        store = FirstLaunchStore(temp_dir / "nested" / "first_launch.json")

        first = store.initialize(FIRST_LAUNCH)
        second = store.initialize(FIRST_LAUNCH + timedelta(days=3))

        assert first == FIRST_LAUNCH
        assert second == FIRST_LAUNCH
        assert store.get() == FIRST_LAUNCH

    def test_corrupt_file_raises_store_failure(self, temp_dir):
        path = temp_dir / "first_launch.json"
        path.write_text("{not json")

        with pytest.raises(StoreFailure):
            FirstLaunchStore(path).get()


class TestTrialWindow:
    """Tests for trial membership and days remaining"""

    def test_first_launch_instant(self, trial_at):
        clock = trial_at(timedelta(0))
        assert clock.is_within_trial() is True
        assert clock.days_remaining() == 15

    def test_partial_day_rounds_up(self, trial_at):
        clock = trial_at(timedelta(days=12, hours=1))
        assert clock.is_within_trial() is True
        assert clock.days_remaining() == 3

    def test_one_second_before_expiry(self, trial_at):
        clock = trial_at(TRIAL_LENGTH - timedelta(seconds=1))
        assert clock.is_within_trial() is True
        assert clock.days_remaining() == 1

    def test_expiry_instant_is_expired(self, trial_at):
        clock = trial_at(TRIAL_LENGTH)
        assert clock.is_within_trial() is False
        assert clock.days_remaining() == 0

    def test_long_after_expiry(self, trial_at):
        clock = trial_at(timedelta(days=400))
        assert clock.is_within_trial() is False
        assert clock.days_remaining() == 0

    def test_trial_ends_at(self, trial_at):
        assert trial_at(timedelta(0)).trial_ends_at() == FIRST_LAUNCH + TRIAL_LENGTH


class TestFailClosed:
    """A trial that cannot be established is treated as expired"""

    def test_missing_first_launch(self, temp_dir):
        store = FirstLaunchStore(temp_dir / "first_launch.json")
        clock = TrialClock(store, TRIAL_LENGTH, now=MutableClock(FIRST_LAUNCH))

        assert clock.is_within_trial() is False
        assert clock.days_remaining() == 0

    def test_unreadable_first_launch(self, temp_dir):
        path = temp_dir / "first_launch.json"
        path.write_text('{"first_launch_date": "yesterday"}')
        clock = TrialClock(FirstLaunchStore(path), TRIAL_LENGTH, now=MutableClock(FIRST_LAUNCH))

        assert clock.is_within_trial() is False
        assert clock.days_remaining() == 0


class TestTrialStatus:
    """Both trial values come from a single evaluation"""

    def test_status_fields(self, trial_at):
        status = trial_at(timedelta(days=12, hours=1)).status()

        assert status == TrialStatus(in_trial=True, days_remaining=3, ends_at=FIRST_LAUNCH + TRIAL_LENGTH)

    def test_clock_read_once_at_expiry_boundary(self, first_launch_store):
        readings = []

        def ticking_now():
            # Each reading is one second later; the first lands just before expiry
            readings.append(None)
            return FIRST_LAUNCH + TRIAL_LENGTH - timedelta(seconds=1) + timedelta(seconds=len(readings) - 1)

        status = TrialClock(first_launch_store, TRIAL_LENGTH, now=ticking_now).status()

        assert len(readings) == 1
        assert status.in_trial is True
        assert status.days_remaining == 1

    def test_expired_status_has_no_days(self, trial_at):
        status = trial_at(TRIAL_LENGTH).status()

        assert status.in_trial is False
        assert status.days_remaining == 0

    def test_missing_first_launch_status(self, temp_dir):
        clock = TrialClock(FirstLaunchStore(temp_dir / "first_launch.json"), TRIAL_LENGTH)

        assert clock.status() == TrialStatus(in_trial=False, days_remaining=0)
