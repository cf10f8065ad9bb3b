"""
Entitlement Engine for HourFlow

Decides whether the current user is entitled to premium capability and keeps
that decision fresh under unreliable connectivity.

Architecture:
- Remote billing authority is asked first, results cached locally
- Local cache answers when the authority is unreachable
- A 15-day trial from first launch grants premium regardless of billing
- Overlapping rechecks are ordered by sequence number; stale results are dropped
"""

from entitlements.models import (
    SubscriptionTier,
    SubscriptionStatus,
    EntitlementSource,
    EntitlementPhase,
    EntitlementState,
    CachedSubscriptionRecord,
    RemoteStatus,
    Failure,
    FailureKind,
)
from entitlements.errors import (
    EntitlementError,
    NetworkFailure,
    MalformedResponse,
    StoreFailure,
    InvariantViolation,
)
from entitlements.trial_clock import TrialClock, FirstLaunchStore
from entitlements.cache_store import LocalCacheStore
from entitlements.remote_client import RemoteAuthorityClient
from entitlements.feature_gate import (
    FeatureAccessPolicy,
    FeatureGateError,
    FreeTierLimits,
    PremiumFeature,
    feature_required,
)
from entitlements.identity import IdentityStore
from entitlements.resolver import EntitlementResolver, Resolution
from entitlements.verification import (
    SubscriptionVerifier,
    VerificationOutcome,
    VerificationResult,
)
from entitlements.triggers import AppState, EntitlementTriggers, TriggerReason
from entitlements.engine import EntitlementEngine, build_engine

__all__ = [
    # Models
    'SubscriptionTier',
    'SubscriptionStatus',
    'EntitlementSource',
    'EntitlementPhase',
    'EntitlementState',
    'CachedSubscriptionRecord',
    'RemoteStatus',
    'Failure',
    'FailureKind',
    # Errors
    'EntitlementError',
    'NetworkFailure',
    'MalformedResponse',
    'StoreFailure',
    'InvariantViolation',
    # Components
    'TrialClock',
    'FirstLaunchStore',
    'LocalCacheStore',
    'RemoteAuthorityClient',
    'FeatureAccessPolicy',
    'FeatureGateError',
    'FreeTierLimits',
    'PremiumFeature',
    'feature_required',
    'IdentityStore',
    'EntitlementResolver',
    'Resolution',
    # Verification
    'SubscriptionVerifier',
    'VerificationOutcome',
    'VerificationResult',
    # Triggers and wiring
    'AppState',
    'EntitlementTriggers',
    'TriggerReason',
    'EntitlementEngine',
    'build_engine',
]
