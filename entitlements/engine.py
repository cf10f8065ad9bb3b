"""
Entitlement engine - wires the components together from settings

    engine = build_engine(invoice_counter=invoice_repo.count_this_month)
    await engine.start()
    ...
    if engine.has_access(PremiumFeature.PDF_EXPORT):
        ...
    engine.on_app_state_change("active")
    ...
    await engine.stop()
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

import httpx

from config import Settings, settings as default_settings
from entitlements.cache_store import LocalCacheStore
from entitlements.errors import StoreFailure
from entitlements.feature_gate import FeatureAccessPolicy, FreeTierLimits, InvoiceCounter, PremiumFeature
from entitlements.identity import IdentityStore
from entitlements.models import EntitlementState
from entitlements.remote_client import RemoteAuthorityClient
from entitlements.resolver import EntitlementResolver
from entitlements.trial_clock import FirstLaunchStore, TrialClock
from entitlements.triggers import EntitlementTriggers
from entitlements.verification import SubscriptionVerifier, VerificationResult

logger = logging.getLogger(__name__)


class EntitlementEngine:
    """Facade over resolver, policy, verifier and triggers"""

    def __init__(
        self,
        first_launch_store: FirstLaunchStore,
        identity_store: IdentityStore,
        resolver: EntitlementResolver,
        policy: FeatureAccessPolicy,
        triggers: EntitlementTriggers,
    ):
        self.first_launch_store = first_launch_store
        self.identity_store = identity_store
        self.resolver = resolver
        self.policy = policy
        self.triggers = triggers
        self.verifier = SubscriptionVerifier(resolver, identity_store)

    @property
    def state(self) -> EntitlementState:
        return self.resolver.state

    async def start(self) -> EntitlementState:
        """Record first launch (once), then run the app-start recheck"""
        try:
            await asyncio.to_thread(self.first_launch_store.initialize)
        except StoreFailure as e:
            logger.warning(f"Could not record first launch, trial unavailable: {e.message}")

        await self.triggers.start()
        return self.state

    async def stop(self) -> None:
        await self.triggers.stop()

    def on_app_state_change(self, app_state) -> Optional[asyncio.Task]:
        return self.triggers.on_app_state_change(app_state)

    # ========== Explicit user actions ==========

    async def restore(self) -> VerificationResult:
        return await self.verifier.restore()

    async def verify_email(self, email: str) -> VerificationResult:
        return await self.verifier.verify_email(email)

    # ========== Feature checks against the current snapshot ==========

    def has_access(self, feature: PremiumFeature) -> bool:
        return self.policy.has_access(feature, self.state.is_premium)

    def can_add_more_clients(self, current_count: int) -> bool:
        return self.policy.can_add_more_clients(current_count, self.state.is_premium)

    def can_add_more_materials(self, current_count: int) -> bool:
        return self.policy.can_add_more_materials(current_count, self.state.is_premium)

    async def can_create_more_invoices(self) -> bool:
        return await self.policy.can_create_more_invoices(self.state.is_premium)


def build_engine(
    settings: Optional[Settings] = None,
    invoice_counter: Optional[InvoiceCounter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EntitlementEngine:
    """Create an engine with file-backed stores under STORAGE_DIR"""
    settings = settings or default_settings
    settings.create_directories()
    logging.getLogger("entitlements").setLevel(settings.LOG_LEVEL)

    first_launch_store = FirstLaunchStore(settings.first_launch_path)
    trial_clock = TrialClock(first_launch_store, timedelta(days=settings.TRIAL_LENGTH_DAYS))
    cache_store = LocalCacheStore(
        settings.subscription_cache_path,
        secret=settings.CACHE_SECRET,
        salt=settings.CACHE_SALT,
        iterations=settings.CACHE_KDF_ITERATIONS,
    )
    remote_client = RemoteAuthorityClient(
        settings.SUBSCRIPTION_API_URL,
        timeout=settings.SUBSCRIPTION_REQUEST_TIMEOUT,
        transport=transport,
        retry_attempts=settings.SUBSCRIPTION_RETRY_ATTEMPTS,
        retry_wait=settings.SUBSCRIPTION_RETRY_WAIT,
    )
    resolver = EntitlementResolver(trial_clock, remote_client, cache_store, debug=settings.DEBUG)
    identity_store = IdentityStore(settings.identity_path)
    policy = FeatureAccessPolicy(FreeTierLimits.from_settings(settings), invoice_counter)
    triggers = EntitlementTriggers(
        resolver,
        identity_store,
        recheck_interval=settings.RECHECK_INTERVAL,
        foreground_threshold=settings.FOREGROUND_RECHECK_THRESHOLD,
    )

    return EntitlementEngine(first_launch_store, identity_store, resolver, policy, triggers)
