"""
Entitlement Resolver - reconciles billing authority, local cache and trial

Resolution order for a signed-in identity:
1. Remote billing authority (result written through to the local cache)
2. Local cache, when the remote lookup fails
3. Trial clock only, when neither is available

Trial membership is ORed into every branch, so a user mid-trial is premium
no matter what the billing sources say.

Concurrency:
Rechecks may overlap (periodic timer, foreground, explicit restore). Each
invocation takes a sequence number when it starts and its result is
published only if no later-started invocation has already been published.
Superseded results are dropped, not cancelled at the transport level.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional, Union

from entitlements.cache_store import LocalCacheStore
from entitlements.errors import InvariantViolation, StoreFailure
from entitlements.models import (
    CachedSubscriptionRecord,
    EntitlementSource,
    EntitlementState,
    Failure,
    RemoteStatus,
    utc_now,
)
from entitlements.remote_client import RemoteAuthorityClient
from entitlements.trial_clock import TrialClock

logger = logging.getLogger(__name__)

StateListener = Callable[[EntitlementState], None]


@dataclass(frozen=True)
class Resolution:
    """Outcome of one recheck invocation"""
    state: EntitlementState
    sequence: int = 0
    remote: Optional[Union[RemoteStatus, Failure]] = None
    cached: Optional[CachedSubscriptionRecord] = None
    applied: bool = False

    @property
    def remote_succeeded(self) -> bool:
        return isinstance(self.remote, RemoteStatus)

    @property
    def has_active_remote_subscription(self) -> bool:
        return self.remote_succeeded and self.remote.has_active_subscription


class EntitlementResolver:
    """
    Owns the published ``EntitlementState``.

    The state is replaced, never mutated, and only by the completion of a
    recheck that is newer than the last one published.
    """

    def __init__(
        self,
        trial_clock: TrialClock,
        remote_client: RemoteAuthorityClient,
        cache_store: LocalCacheStore,
        debug: bool = False,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._trial_clock = trial_clock
        self._remote = remote_client
        self._cache = cache_store
        self._debug = debug
        self._monotonic = monotonic

        self._state = EntitlementState.initial()
        self._listeners: List[StateListener] = []

        # Sequencing
        self._sequence = 0
        self._applied_sequence = 0
        self._in_flight = 0

        # Last successful remote check
        self._last_success_at: Optional[datetime] = None
        self._last_success_monotonic: Optional[float] = None

    # ========== Observation ==========

    @property
    def state(self) -> EntitlementState:
        """Latest published snapshot"""
        return self._state

    @property
    def last_success_at(self) -> Optional[datetime]:
        return self._last_success_at

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def seconds_since_last_success(self) -> Optional[float]:
        if self._last_success_monotonic is None:
            return None
        return self._monotonic() - self._last_success_monotonic

    def should_recheck_on_foreground(self, threshold: float) -> bool:
        """True if the last successful remote check is older than threshold"""
        elapsed = self.seconds_since_last_success()
        return elapsed is None or elapsed > threshold

    # ========== Resolution ==========

    async def recheck(self, identity: Optional[str]) -> EntitlementState:
        """
        Re-resolve entitlement for an identity (None when signed out).

        Returns:
            The state computed by this invocation. It is only published if
            no newer invocation has completed first; read ``state`` for the
            published snapshot.
        """
        resolution = await self.refresh(identity)
        return resolution.state

    async def refresh(self, identity: Optional[str]) -> Resolution:
        """Run one recheck and return its full outcome"""
        self._sequence += 1
        sequence = self._sequence
        self._in_flight += 1
        finished = False

        try:
            try:
                resolution = await self._resolve(sequence, identity)
            except InvariantViolation as e:
                logger.error(f"Entitlement invariant violated in recheck #{sequence}: {e.message}")
                if self._debug:
                    raise
                resolution = Resolution(state=EntitlementState.fail_closed())

            applied = self._finish(sequence, resolution.state)
            finished = True
            return replace(resolution, sequence=sequence, applied=applied)
        finally:
            if not finished:
                self._finish(sequence, None)

    async def _resolve(self, sequence: int, identity: Optional[str]) -> Resolution:
        trial = await asyncio.to_thread(self._trial_clock.status)
        in_trial = trial.in_trial
        days_remaining = trial.days_remaining
        trial_source = EntitlementSource.TRIAL if in_trial else EntitlementSource.NONE

        if not identity:
            return Resolution(state=EntitlementState.resolve(
                in_trial=in_trial,
                has_active=False,
                source=trial_source,
                trial_days_remaining=days_remaining,
            ))

        self._mark_loading(sequence)

        remote = await self._remote.fetch_status(identity)

        if isinstance(remote, RemoteStatus):
            await self._write_through(identity, remote)
            self._last_success_at = utc_now()
            self._last_success_monotonic = self._monotonic()

            return Resolution(
                state=EntitlementState.resolve(
                    in_trial=in_trial,
                    has_active=remote.has_active_subscription,
                    source=EntitlementSource.API,
                    trial_days_remaining=days_remaining,
                    expiration_date=remote.current_period_end,
                    status=remote.status,
                ),
                remote=remote,
            )

        cached = await self._read_cache(identity)
        if cached is not None:
            logger.warning(f"Using cached subscription for {identity} ({remote.kind.value} failure)")
            return Resolution(
                state=EntitlementState.resolve(
                    in_trial=in_trial,
                    has_active=cached.has_active_subscription,
                    source=EntitlementSource.CACHE,
                    trial_days_remaining=days_remaining,
                    expiration_date=cached.current_period_end,
                    status=cached.status,
                ),
                remote=remote,
                cached=cached,
            )

        logger.warning(f"No subscription data for {identity}, falling back to trial status")
        return Resolution(
            state=EntitlementState.resolve(
                in_trial=in_trial,
                has_active=False,
                source=trial_source,
                trial_days_remaining=days_remaining,
            ),
            remote=remote,
        )

    async def _write_through(self, identity: str, remote: RemoteStatus) -> None:
        """Cache a successful lookup. A failed write does not invalidate it."""
        try:
            await self._cache.put(
                identity,
                remote.subscribed,
                remote.status,
                remote.current_period_end,
            )
        except StoreFailure as e:
            logger.error(f"Could not cache subscription for {identity}: {e.message}")

    async def _read_cache(self, identity: str) -> Optional[CachedSubscriptionRecord]:
        try:
            return await self._cache.get(identity)
        except StoreFailure as e:
            logger.warning(f"Subscription cache unreadable for {identity}: {e.message}")
            return None

    # ========== Publication ==========

    def _mark_loading(self, sequence: int) -> None:
        if sequence <= self._applied_sequence or self._state.is_loading:
            return
        self._publish(self._state.with_loading(True))

    def _finish(self, sequence: int, state: Optional[EntitlementState]) -> bool:
        """
        Complete an invocation.

        Returns:
            True if ``state`` was published
        """
        self._in_flight -= 1
        still_loading = self._in_flight > 0

        if state is not None and sequence > self._applied_sequence:
            self._applied_sequence = sequence
            previous = self._state
            self._publish(state.with_loading(still_loading))
            if previous.phase != state.phase:
                logger.info(
                    f"Entitlement {previous.phase.value} -> {state.phase.value} "
                    f"(source={state.source.value})"
                )
            return True

        if state is not None:
            logger.info(
                f"Discarding stale recheck #{sequence}; "
                f"#{self._applied_sequence} already published"
            )

        if not still_loading and self._state.is_loading and self._applied_sequence > 0:
            self._publish(self._state.with_loading(False))
        return False

    def _publish(self, state: EntitlementState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Entitlement listener failed: {e}")
