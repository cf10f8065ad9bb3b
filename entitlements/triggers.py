"""
Recheck triggers - everything that asks the resolver to re-resolve

- App start and identity change: immediate, unconditional
- Periodic timer: every RECHECK_INTERVAL while the process is alive
- App foreground: only when the last successful check is older than
  FOREGROUND_RECHECK_THRESHOLD

Triggers only decide *when* to recheck. They are silent: failures are
logged and never reach the user. Explicit user actions go through
``SubscriptionVerifier`` instead.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Set

from entitlements.errors import InvariantViolation
from entitlements.identity import IdentityProvider, IdentityStore
from entitlements.models import EntitlementState
from entitlements.resolver import EntitlementResolver

logger = logging.getLogger(__name__)


class TriggerReason(str, Enum):
    APP_START = "app_start"
    IDENTITY_CHANGE = "identity_change"
    PERIODIC = "periodic"
    FOREGROUND = "foreground"


class AppState(str, Enum):
    """App lifecycle states reported by the platform"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class RecheckScheduler:
    """Single entry point through which every trigger reaches the resolver"""

    def __init__(self, resolver: EntitlementResolver, identity_provider: IdentityProvider):
        self._resolver = resolver
        self._identity = identity_provider
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def run(self, reason: TriggerReason) -> Optional[EntitlementState]:
        """Recheck now for the current identity. Never raises on I/O errors."""
        identity = self._identity.current()
        logger.debug(f"Recheck triggered by {reason.value}")
        try:
            return await self._resolver.recheck(identity)
        except InvariantViolation:
            raise
        except Exception as e:
            logger.error(f"Background recheck ({reason.value}) failed: {e}")
            return None

    def schedule(self, reason: TriggerReason) -> asyncio.Task:
        """Start a recheck in the background"""
        task = asyncio.get_running_loop().create_task(self.run(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def cancel_pending(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class PeriodicRecheck:
    """Fixed-interval recheck, independent of foreground/background"""

    def __init__(self, scheduler: RecheckScheduler, interval: float):
        self._scheduler = scheduler
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Periodic recheck is already running")
            return
        logger.info(f"Starting periodic entitlement recheck every {self.interval:.0f}s")
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._scheduler.run(TriggerReason.PERIODIC)


class AppLifecycleListener:
    """Rechecks on foreground transitions, throttled by last success"""

    def __init__(
        self,
        scheduler: RecheckScheduler,
        resolver: EntitlementResolver,
        threshold: float,
    ):
        self._scheduler = scheduler
        self._resolver = resolver
        self.threshold = threshold

    def on_app_state_change(self, state) -> Optional[asyncio.Task]:
        if AppState(state) != AppState.ACTIVE:
            return None
        if not self._resolver.should_recheck_on_foreground(self.threshold):
            logger.debug("Foreground recheck skipped, last check is recent")
            return None
        return self._scheduler.schedule(TriggerReason.FOREGROUND)


class EntitlementTriggers:
    """Wires app start, identity change, timer and lifecycle to one scheduler"""

    def __init__(
        self,
        resolver: EntitlementResolver,
        identity_store: IdentityStore,
        recheck_interval: float,
        foreground_threshold: float,
    ):
        self.scheduler = RecheckScheduler(resolver, identity_store)
        self.periodic = PeriodicRecheck(self.scheduler, recheck_interval)
        self.lifecycle = AppLifecycleListener(self.scheduler, resolver, foreground_threshold)
        self._identity_store = identity_store
        self._remove_identity_listener: Optional[Callable[[], None]] = None

    async def start(self) -> Optional[EntitlementState]:
        """Attach listeners, start the timer and run the app-start recheck"""
        if self._remove_identity_listener is None:
            self._remove_identity_listener = self._identity_store.add_listener(self._on_identity_changed)
        self.periodic.start()
        return await self.scheduler.run(TriggerReason.APP_START)

    async def stop(self) -> None:
        if self._remove_identity_listener is not None:
            self._remove_identity_listener()
            self._remove_identity_listener = None
        await self.periodic.stop()
        await self.scheduler.cancel_pending()

    def on_app_state_change(self, state) -> Optional[asyncio.Task]:
        return self.lifecycle.on_app_state_change(state)

    def _on_identity_changed(self, identity: Optional[str]) -> None:
        self.scheduler.schedule(TriggerReason.IDENTITY_CHANGE)
