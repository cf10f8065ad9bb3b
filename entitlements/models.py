"""
Entitlement Data Models

Defines the core data structures shared by the trial clock, the local
subscription cache, the remote authority client and the resolver.
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Optional
from datetime import datetime, timezone

from entitlements.errors import InvariantViolation


class SubscriptionTier(str, Enum):
    """Resolved access tier"""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Billing status as reported by the remote authority"""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    INACTIVE = "inactive"
    NONE = "none"


class EntitlementSource(str, Enum):
    """Provenance of the last entitlement decision"""
    API = "api"
    CACHE = "cache"
    TRIAL = "trial"
    NONE = "none"


class EntitlementPhase(str, Enum):
    """Resolver state machine phases"""
    LOADING = "loading"
    FREE = "free"
    TRIAL_PREMIUM = "trial_premium"
    PAID_PREMIUM = "paid_premium"
    GRACE_PERIOD_PREMIUM = "grace_period_premium"


class FailureKind(str, Enum):
    NETWORK = "network"
    MALFORMED = "malformed"


# Statuses that still grant access. past_due keeps a lapsed card entitled
# until the billing authority revokes it.
ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def has_active_subscription(subscribed: bool, status: SubscriptionStatus) -> bool:
    """True if a subscription record grants access on its own"""
    return bool(subscribed) and status in ENTITLED_STATUSES


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CachedSubscriptionRecord:
    """
    Last known subscription for one identity.

    Written only after a successful remote lookup. Never expires on its own;
    the resolver decides how much to trust it.
    """
    identity: str
    subscribed: bool
    status: SubscriptionStatus
    checked_at: datetime
    current_period_end: Optional[datetime] = None

    @property
    def has_active_subscription(self) -> bool:
        return has_active_subscription(self.subscribed, self.status)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            'identity': self.identity,
            'subscribed': self.subscribed,
            'status': self.status.value,
            'checked_at': self.checked_at.isoformat(),
            'current_period_end': self.current_period_end.isoformat() if self.current_period_end else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CachedSubscriptionRecord':
        """Create from dictionary"""
        return cls(
            identity=data['identity'],
            subscribed=bool(data['subscribed']),
            status=SubscriptionStatus(data['status']),
            checked_at=_parse_datetime(data['checked_at']),
            current_period_end=_parse_datetime(data.get('current_period_end')),
        )


@dataclass(frozen=True)
class RemoteStatus:
    """Successful answer from the remote billing authority"""
    subscribed: bool
    status: SubscriptionStatus
    plan: str = ""
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @property
    def has_active_subscription(self) -> bool:
        return has_active_subscription(self.subscribed, self.status)


@dataclass(frozen=True)
class Failure:
    """Unsuccessful remote lookup. Always recoverable by falling back."""
    kind: FailureKind
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class EntitlementState:
    """
    Immutable snapshot of the current entitlement.

    Only the resolver creates non-initial snapshots, through ``resolve``,
    so ``is_premium`` is always derived from its inputs.
    """
    is_loading: bool = True
    is_premium: bool = False
    tier: SubscriptionTier = SubscriptionTier.FREE
    expiration_date: Optional[datetime] = None
    source: EntitlementSource = EntitlementSource.NONE
    phase: EntitlementPhase = EntitlementPhase.LOADING
    in_trial: bool = False
    trial_days_remaining: int = 0
    checked_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def initial(cls) -> 'EntitlementState':
        return cls()

    @classmethod
    def resolve(
        cls,
        *,
        in_trial: Optional[bool],
        has_active: bool,
        source: EntitlementSource,
        trial_days_remaining: int = 0,
        expiration_date: Optional[datetime] = None,
        status: Optional[SubscriptionStatus] = None,
        checked_at: Optional[datetime] = None,
    ) -> 'EntitlementState':
        """
        Combine subscription and trial inputs into a snapshot.

        Raises:
            InvariantViolation: if the trial window was not evaluated
        """
        if not isinstance(in_trial, bool):
            raise InvariantViolation(
                f"Entitlement resolved without a trial evaluation (in_trial={in_trial!r})"
            )

        is_premium = bool(has_active) or in_trial

        if has_active and status == SubscriptionStatus.PAST_DUE:
            phase = EntitlementPhase.GRACE_PERIOD_PREMIUM
        elif has_active:
            phase = EntitlementPhase.PAID_PREMIUM
        elif in_trial:
            phase = EntitlementPhase.TRIAL_PREMIUM
        else:
            phase = EntitlementPhase.FREE

        return cls(
            is_loading=False,
            is_premium=is_premium,
            tier=SubscriptionTier.PREMIUM if is_premium else SubscriptionTier.FREE,
            expiration_date=expiration_date,
            source=source,
            phase=phase,
            in_trial=in_trial,
            trial_days_remaining=max(0, int(trial_days_remaining)),
            checked_at=checked_at or utc_now(),
        )

    @classmethod
    def fail_closed(cls) -> 'EntitlementState':
        """Snapshot published when resolution itself is broken"""
        return cls(
            is_loading=False,
            is_premium=False,
            tier=SubscriptionTier.FREE,
            source=EntitlementSource.NONE,
            phase=EntitlementPhase.FREE,
            checked_at=utc_now(),
        )

    def with_loading(self, is_loading: bool) -> 'EntitlementState':
        return replace(self, is_loading=is_loading)

    def to_dict(self) -> dict:
        """Convert to dictionary for diagnostics"""
        return {
            'is_loading': self.is_loading,
            'is_premium': self.is_premium,
            'tier': self.tier.value,
            'expiration_date': self.expiration_date.isoformat() if self.expiration_date else None,
            'source': self.source.value,
            'phase': self.phase.value,
            'in_trial': self.in_trial,
            'trial_days_remaining': self.trial_days_remaining,
            'checked_at': self.checked_at.isoformat() if self.checked_at else None,
        }
