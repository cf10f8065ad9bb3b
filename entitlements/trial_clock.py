"""
Trial Clock - time-bounded free trial from first launch

The trial window is anchored on a single ``first_launch_date`` that is
written once, on first run, and never mutated afterwards. Every question
about the trial is derived from that timestamp and the trial length.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from entitlements.errors import StoreFailure
from entitlements.models import utc_now

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class TrialStatus:
    """Trial membership and days remaining, evaluated at one instant"""
    in_trial: bool
    days_remaining: int
    ends_at: Optional[datetime] = None


class FirstLaunchStore:
    """Durable write-once scalar holding the first launch date"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def get(self) -> Optional[datetime]:
        """
        Read the stored first launch date.

        Returns:
            The timestamp, or None if it was never written

        Raises:
            StoreFailure: if the file exists but cannot be read or parsed
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            value = datetime.fromisoformat(data['first_launch_date'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StoreFailure(f"Could not read first launch date: {e}") from e

        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def initialize(self, now: Optional[datetime] = None) -> datetime:
        """
        Record the first launch date if none exists yet.

        Returns:
            The stored first launch date (existing or newly written)
        """
        existing = self.get()
        if existing is not None:
            return existing

        first_launch = now or utc_now()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump({'first_launch_date': first_launch.isoformat()}, f, indent=2)
        except OSError as e:
            raise StoreFailure(f"Could not write first launch date: {e}") from e

        logger.info(f"Trial started, first launch recorded at {first_launch.isoformat()}")
        return first_launch


class TrialClock:
    """
    Derives trial membership and days remaining.

    A missing or unreadable first launch date counts as an expired trial.
    """

    DEFAULT_TRIAL_LENGTH = timedelta(days=15)

    def __init__(
        self,
        store: FirstLaunchStore,
        trial_length: timedelta = DEFAULT_TRIAL_LENGTH,
        now: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._trial_length = trial_length
        self._now = now

    @property
    def trial_length(self) -> timedelta:
        return self._trial_length

    def trial_ends_at(self) -> Optional[datetime]:
        """End of the trial window, or None if it cannot be determined"""
        try:
            first_launch = self._store.get()
        except StoreFailure as e:
            logger.warning(f"Trial clock unavailable, treating trial as expired: {e}")
            return None

        if first_launch is None:
            return None
        return first_launch + self._trial_length

    def status(self) -> TrialStatus:
        """
        Evaluate the trial with one store read and one clock reading.

        Blocking; async callers run it in a worker thread.
        """
        ends_at = self.trial_ends_at()
        if ends_at is None:
            return TrialStatus(in_trial=False, days_remaining=0)

        remaining = (ends_at - self._now()).total_seconds()
        return TrialStatus(
            in_trial=remaining > 0,
            days_remaining=max(0, math.ceil(remaining / SECONDS_PER_DAY)),
            ends_at=ends_at,
        )

    def is_within_trial(self) -> bool:
        return self.status().in_trial

    def days_remaining(self) -> int:
        return self.status().days_remaining
