#!/usr/bin/env python3
"""
Entitlement Engine Integration Tests

Builds the full engine from Settings against a temporary storage directory
and an in-process billing endpoint.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from config import Settings
from entitlements.engine import EntitlementEngine, build_engine
from entitlements.feature_gate import PremiumFeature
from entitlements.models import EntitlementSource, SubscriptionTier
from entitlements.trial_clock import FirstLaunchStore
from tests.helpers import IDENTITY

LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)

pytestmark = pytest.mark.integration


def billing_endpoint(subscribers):
    """Mock billing API that knows a fixed set of subscribed emails"""
    def handler(request: httpx.Request) -> httpx.Response:
        email = request.url.params.get("email")
        if email in subscribers:
            return httpx.Response(200, json={
                "subscribed": True,
                "status": "active",
                "plan": "yearly",
                "currentPeriodEnd": 1893456000,
                "cancelAtPeriodEnd": False,
            })
        return httpx.Response(200, json={"subscribed": False, "status": "none", "currentPeriodEnd": 0})
    return httpx.MockTransport(handler)


def offline_endpoint():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)
    return httpx.MockTransport(handler)


@pytest.fixture
def settings(temp_dir):
    return Settings(
        STORAGE_DIR=str(temp_dir / "hourflow"),
        SUBSCRIPTION_API_URL="https://billing.test/api",
        CACHE_KDF_ITERATIONS=1000,
        SUBSCRIPTION_RETRY_WAIT=0,
    )


@pytest.fixture
def expired_settings(settings):
    """Settings whose install date is far outside the trial"""
    settings.create_directories()
    FirstLaunchStore(settings.first_launch_path).initialize(LONG_AGO)
    return settings


class TestFreshInstall:

    async def test_first_start_begins_trial(self, settings):
        engine = build_engine(settings, transport=billing_endpoint(set()))

        state = await engine.start()
        try:
            assert isinstance(engine, EntitlementEngine)
            assert settings.first_launch_path.exists()
            assert state.is_premium is True
            assert state.source == EntitlementSource.TRIAL
            assert state.trial_days_remaining == 15
            assert engine.has_access(PremiumFeature.FLEET) is True
        finally:
            await engine.stop()

    async def test_restart_keeps_first_launch(self, expired_settings):
        engine = build_engine(expired_settings, transport=billing_endpoint(set()))

        await engine.start()
        await engine.stop()

        assert FirstLaunchStore(expired_settings.first_launch_path).get() == LONG_AGO


class TestFreeTier:
    """Expired trial, no subscription"""

    async def test_free_tier_limits(self, expired_settings):
        counter = AsyncMock(return_value=5)
        engine = build_engine(expired_settings, invoice_counter=counter, transport=billing_endpoint(set()))

        state = await engine.start()
        try:
            assert state.is_premium is False
            assert state.tier == SubscriptionTier.FREE
            assert engine.has_access(PremiumFeature.PDF_EXPORT) is False
            assert engine.can_add_more_clients(2) is True
            assert engine.can_add_more_clients(3) is False
            assert engine.can_add_more_materials(5) is False
            assert await engine.can_create_more_invoices() is False
        finally:
            await engine.stop()

    async def test_free_flags_from_settings(self, expired_settings):
        expired_settings.FREE_CAN_EXPORT_PDF = True
        engine = build_engine(expired_settings, transport=billing_endpoint(set()))

        await engine.start()
        try:
            assert engine.has_access(PremiumFeature.PDF_EXPORT) is True
            assert engine.has_access(PremiumFeature.EMAIL_INVOICES) is False
        finally:
            await engine.stop()


class TestSubscriberJourney:
    """Verify an email, then come back offline"""

    async def test_verify_then_offline_restart(self, expired_settings):
        engine = build_engine(expired_settings, transport=billing_endpoint({IDENTITY}))
        await engine.start()
        try:
            result = await engine.verify_email("A@B.com")

            assert result.success is True
            assert engine.state.is_premium is True
            assert engine.state.source == EntitlementSource.API
            assert engine.identity_store.current() == IDENTITY
            assert expired_settings.subscription_cache_path.exists()
        finally:
            await engine.stop()

        offline = build_engine(expired_settings, transport=offline_endpoint())
        state = await offline.start()
        try:
            assert state.is_premium is True
            assert state.source == EntitlementSource.CACHE

            restore = await offline.restore()
            assert restore.success is False
            assert "internet connection" in restore.message
        finally:
            await offline.stop()

    async def test_unknown_email_is_rolled_back(self, expired_settings):
        engine = build_engine(expired_settings, transport=billing_endpoint({IDENTITY}))
        await engine.start()
        try:
            result = await engine.verify_email("stranger@b.com")

            assert result.success is False
            assert engine.identity_store.current() is None
            assert not expired_settings.identity_path.exists()
        finally:
            await engine.stop()

    async def test_foreground_after_start(self, expired_settings):
        engine = build_engine(expired_settings, transport=billing_endpoint({IDENTITY}))
        await engine.start()
        try:
            await engine.verify_email(IDENTITY)

            assert engine.on_app_state_change("active") is None
            assert engine.on_app_state_change("background") is None
        finally:
            await engine.stop()
