#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import tempfile
import sys
import os
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from entitlements.cache_store import LocalCacheStore
from entitlements.identity import IdentityStore
from entitlements.models import SubscriptionStatus
from entitlements.remote_client import RemoteAuthorityClient
from entitlements.resolver import EntitlementResolver
from entitlements.trial_clock import FirstLaunchStore, TrialClock
from tests.helpers import (
    FIRST_LAUNCH,
    TRIAL_LENGTH,
    ControlledRemote,
    MonotonicClock,
    MutableClock,
    remote_status,
)


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# CLOCKS AND TRIAL
# ============================================================================

@pytest.fixture
def clock():
    """Wall clock positioned well after the trial ended"""
    return MutableClock(FIRST_LAUNCH + timedelta(days=40))


@pytest.fixture
def monotonic():
    return MonotonicClock()


@pytest.fixture
def first_launch_store(temp_dir):
    store = FirstLaunchStore(temp_dir / "first_launch.json")
    store.initialize(FIRST_LAUNCH)
    return store


@pytest.fixture
def trial_clock(first_launch_store, clock):
    return TrialClock(first_launch_store, TRIAL_LENGTH, now=clock)


# ============================================================================
# STORES AND REMOTE
# ============================================================================

@pytest.fixture
def cache_store(temp_dir):
    """Encrypted cache with a cheap key derivation for tests"""
    return LocalCacheStore(
        temp_dir / "subscription_cache.enc",
        secret="test-secret",
        salt="test-salt",
        iterations=1000,
    )


@pytest.fixture
def identity_store(temp_dir):
    return IdentityStore(temp_dir / "user_auth.json")


@pytest.fixture
def mock_remote():
    """Remote client mock returning no subscription by default"""
    remote = MagicMock(spec=RemoteAuthorityClient)
    remote.fetch_status = AsyncMock(
        return_value=remote_status(subscribed=False, status=SubscriptionStatus.NONE)
    )
    return remote


@pytest.fixture
def controlled_remote():
    return ControlledRemote()


@pytest.fixture
def resolver(trial_clock, mock_remote, cache_store, monotonic):
    return EntitlementResolver(trial_clock, mock_remote, cache_store, monotonic=monotonic)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "integration: builds the full engine from settings on a temporary directory"
    )
