"""
Feature Gate System - Controls access to features based on entitlement

Premium users can use everything. Free users are checked against:
- A static feature table (premium-only or a configurable free-tier flag)
- Quota gates over externally supplied counters (clients, materials,
  invoices this month)

Usage:
    # Runtime check
    if policy.has_access(PremiumFeature.PDF_EXPORT, state.is_premium):
        enable_pdf_button()

    # Quota check
    if not policy.can_add_more_clients(client_count, state.is_premium):
        show_paywall(PremiumFeature.UNLIMITED_CLIENTS)

    # Decorator-based (for functions)
    @feature_required(PremiumFeature.PDF_EXPORT, lambda: resolver.state.is_premium)
    async def export_invoice_pdf(...):
        ...
"""

import inspect
from dataclasses import dataclass, fields
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
import logging

logger = logging.getLogger(__name__)


class PremiumFeature(str, Enum):
    """Every capability that the free tier may restrict"""
    UNLIMITED_CLIENTS = "unlimited_clients"
    CUSTOM_BRANDING = "custom_branding"
    PDF_EXPORT = "pdf_export"
    EMAIL_INVOICES = "email_invoices"
    SMS_INVOICES = "sms_invoices"
    UNLIMITED_MATERIALS = "unlimited_materials"
    DATA_EXPORT = "data_export"
    RECURRING_JOBS = "recurring_jobs"
    VOICE_NOTES = "voice_notes"
    PROJECT_TEMPLATES = "project_templates"
    ANALYTICS = "analytics"
    INSIGHTS = "insights"
    INVENTORY = "inventory"
    FLEET = "fleet"
    QR_CODES = "qr_codes"
    RECEIPT_SCANNING = "receipt_scanning"
    INTEGRATIONS = "integrations"
    CLIENT_PORTAL = "client_portal"
    GEOFENCING = "geofencing"
    UNLIMITED_INVOICES = "unlimited_invoices"
    UNLIMITED_HISTORY = "unlimited_history"


@dataclass(frozen=True)
class FreeTierLimits:
    """What a free user gets. Single source of truth for free-tier config."""
    max_clients: int = 3
    max_materials_per_client: int = 5
    max_invoices_per_month: int = 5
    can_customize_branding: bool = False
    can_export_pdf: bool = False
    can_email_invoices: bool = False
    can_sms_invoices: bool = False
    can_export_data: bool = False

    @classmethod
    def from_settings(cls, settings) -> 'FreeTierLimits':
        return cls(
            max_clients=settings.FREE_MAX_CLIENTS,
            max_materials_per_client=settings.FREE_MAX_MATERIALS_PER_CLIENT,
            max_invoices_per_month=settings.FREE_MAX_INVOICES_PER_MONTH,
            can_customize_branding=settings.FREE_CAN_CUSTOMIZE_BRANDING,
            can_export_pdf=settings.FREE_CAN_EXPORT_PDF,
            can_email_invoices=settings.FREE_CAN_EMAIL_INVOICES,
            can_sms_invoices=settings.FREE_CAN_SMS_INVOICES,
            can_export_data=settings.FREE_CAN_EXPORT_DATA,
        )


@dataclass(frozen=True)
class FeatureRule:
    """
    How a feature behaves on the free tier.

    ``free_flag`` names a boolean field of FreeTierLimits; without one the
    feature is premium-only.
    """
    free_flag: Optional[str] = None

    @property
    def premium_only(self) -> bool:
        return self.free_flag is None


PREMIUM_ONLY = FeatureRule()

FEATURE_POLICY: Dict[PremiumFeature, FeatureRule] = {
    PremiumFeature.UNLIMITED_CLIENTS: PREMIUM_ONLY,
    PremiumFeature.CUSTOM_BRANDING: FeatureRule('can_customize_branding'),
    PremiumFeature.PDF_EXPORT: FeatureRule('can_export_pdf'),
    PremiumFeature.EMAIL_INVOICES: FeatureRule('can_email_invoices'),
    PremiumFeature.SMS_INVOICES: FeatureRule('can_sms_invoices'),
    PremiumFeature.UNLIMITED_MATERIALS: PREMIUM_ONLY,
    PremiumFeature.DATA_EXPORT: FeatureRule('can_export_data'),
    PremiumFeature.RECURRING_JOBS: PREMIUM_ONLY,
    PremiumFeature.VOICE_NOTES: PREMIUM_ONLY,
    PremiumFeature.PROJECT_TEMPLATES: PREMIUM_ONLY,
    PremiumFeature.ANALYTICS: PREMIUM_ONLY,
    PremiumFeature.INSIGHTS: PREMIUM_ONLY,
    PremiumFeature.INVENTORY: PREMIUM_ONLY,
    PremiumFeature.FLEET: PREMIUM_ONLY,
    PremiumFeature.QR_CODES: PREMIUM_ONLY,
    PremiumFeature.RECEIPT_SCANNING: PREMIUM_ONLY,
    PremiumFeature.INTEGRATIONS: PREMIUM_ONLY,
    PremiumFeature.CLIENT_PORTAL: PREMIUM_ONLY,
    PremiumFeature.GEOFENCING: PREMIUM_ONLY,
    PremiumFeature.UNLIMITED_INVOICES: PREMIUM_ONLY,
    PremiumFeature.UNLIMITED_HISTORY: PREMIUM_ONLY,
}


def validate_policy_table(table: Mapping[PremiumFeature, FeatureRule]) -> None:
    """
    Check that the table covers every feature and only names real flags.

    Raises:
        ValueError: describing the first inconsistency found
    """
    missing = set(PremiumFeature) - set(table)
    if missing:
        raise ValueError(f"Feature policy missing entries: {sorted(f.value for f in missing)}")

    unknown = set(table) - set(PremiumFeature)
    if unknown:
        raise ValueError(f"Feature policy has unknown entries: {sorted(map(str, unknown))}")

    bool_flags = {f.name for f in fields(FreeTierLimits) if f.name.startswith('can_')}
    for feature, rule in table.items():
        if rule.free_flag is not None and rule.free_flag not in bool_flags:
            raise ValueError(f"Feature '{feature.value}' refers to unknown flag '{rule.free_flag}'")


validate_policy_table(FEATURE_POLICY)


class FeatureGateError(Exception):
    """Raised when a feature is not available"""

    def __init__(self, feature: str, message: str):
        self.feature = feature
        self.message = message
        super().__init__(message)


InvoiceCounter = Callable[[], Awaitable[int]]


class FeatureAccessPolicy:
    """
    Maps capabilities and quotas onto the premium flag.

    The policy holds no counters; callers supply current counts, and the
    monthly invoice count comes from the invoice store collaborator.
    """

    UPGRADE_MESSAGES = {
        PremiumFeature.UNLIMITED_CLIENTS: "You've reached the free limit of clients. Upgrade to add unlimited clients.",
        PremiumFeature.CUSTOM_BRANDING: "Add your logo and colors to invoices with Premium.",
        PremiumFeature.PDF_EXPORT: "Export professional PDF invoices with Premium.",
        PremiumFeature.EMAIL_INVOICES: "Email invoices directly to clients with Premium.",
        PremiumFeature.SMS_INVOICES: "Text invoices to clients with Premium.",
        PremiumFeature.UNLIMITED_MATERIALS: "You've reached the free limit of materials. Upgrade for unlimited materials.",
        PremiumFeature.DATA_EXPORT: "Export your data to CSV and Excel with Premium.",
        PremiumFeature.UNLIMITED_INVOICES: "You've reached this month's free invoice limit. Upgrade for unlimited invoices.",
    }

    def __init__(
        self,
        limits: Optional[FreeTierLimits] = None,
        invoice_counter: Optional[InvoiceCounter] = None,
        table: Mapping[PremiumFeature, FeatureRule] = FEATURE_POLICY,
    ):
        if table is not FEATURE_POLICY:
            validate_policy_table(table)
        self.limits = limits or FreeTierLimits()
        self._invoice_counter = invoice_counter
        self._table = table

    def has_access(self, feature: PremiumFeature, is_premium: bool) -> bool:
        """Check if a capability is available"""
        if is_premium:
            return True

        rule = self._table[PremiumFeature(feature)]
        if rule.premium_only:
            return False
        return bool(getattr(self.limits, rule.free_flag))

    def can_add_more_clients(self, current_count: int, is_premium: bool) -> bool:
        return is_premium or current_count < self.limits.max_clients

    def can_add_more_materials(self, current_count: int, is_premium: bool) -> bool:
        """Materials are limited per client"""
        return is_premium or current_count < self.limits.max_materials_per_client

    async def can_create_more_invoices(self, is_premium: bool) -> bool:
        """
        Check the monthly invoice quota.

        The invoice store is only consulted for free users.
        """
        if is_premium:
            return True
        if self._invoice_counter is None:
            raise RuntimeError("No invoice counter configured for the monthly invoice quota")

        count = await self._invoice_counter()
        return count < self.limits.max_invoices_per_month

    def upgrade_message(self, feature: PremiumFeature) -> str:
        """Get a user-friendly upgrade message for a feature"""
        feature = PremiumFeature(feature)
        if feature in self.UPGRADE_MESSAGES:
            return self.UPGRADE_MESSAGES[feature]
        feature_display = feature.value.replace('_', ' ').title()
        return f"'{feature_display}' requires a Premium subscription. Upgrade now to unlock it!"

    def available_features(self, is_premium: bool) -> Dict[str, bool]:
        """Access map for every feature, for diagnostics"""
        return {feature.value: self.has_access(feature, is_premium) for feature in PremiumFeature}


def feature_required(
    feature: PremiumFeature,
    is_premium: Callable[[], bool],
    policy: Optional[FeatureAccessPolicy] = None,
    raise_error: bool = True,
):
    """
    Decorator to require a feature for a function.

    Args:
        feature: The required feature
        is_premium: Returns the current premium flag at call time
        policy: Policy to consult (default free-tier limits if omitted)
        raise_error: If True, raise FeatureGateError. If False, return None.
    """
    gate = policy or FeatureAccessPolicy()

    def check() -> bool:
        if gate.has_access(feature, is_premium()):
            return True
        message = gate.upgrade_message(feature)
        if raise_error:
            raise FeatureGateError(feature=PremiumFeature(feature).value, message=message)
        logger.warning(f"Feature '{PremiumFeature(feature).value}' not available: {message}")
        return False

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            if not check():
                return None
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            if not check():
                return None
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
