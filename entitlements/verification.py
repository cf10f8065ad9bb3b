"""
Subscription verification - user-initiated restore and email verify

Unlike background rechecks, these flows report an outcome the UI can show:
verified, no subscription found, or a connection error.

Sign-in-then-verify signs the user back out when no active subscription is
found, so the app never keeps a signed-in but unentitled identity.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from entitlements.identity import IdentityStore, normalize_email
from entitlements.models import EntitlementState
from entitlements.resolver import EntitlementResolver

logger = logging.getLogger(__name__)


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    NO_SUBSCRIPTION = "no_subscription"
    CONNECTION_ERROR = "connection_error"
    SIGN_IN_REQUIRED = "sign_in_required"
    INVALID_EMAIL = "invalid_email"


VERIFICATION_MESSAGES = {
    VerificationOutcome.VERIFIED: "Your subscription has been verified!",
    VerificationOutcome.NO_SUBSCRIPTION: "No active subscription was found for this email.",
    VerificationOutcome.CONNECTION_ERROR: (
        "Unable to verify subscription. Please check your internet connection and try again."
    ),
    VerificationOutcome.SIGN_IN_REQUIRED: "Please enter your email first to verify your subscription.",
    VerificationOutcome.INVALID_EMAIL: "Please enter a valid email address.",
}


@dataclass(frozen=True)
class VerificationResult:
    outcome: VerificationOutcome
    state: Optional[EntitlementState] = None

    @property
    def success(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED

    @property
    def message(self) -> str:
        return VERIFICATION_MESSAGES[self.outcome]


class SubscriptionVerifier:
    """Explicit restore / verify actions on top of the resolver"""

    def __init__(self, resolver: EntitlementResolver, identity_store: IdentityStore):
        self._resolver = resolver
        self._identity = identity_store

    async def restore(self) -> VerificationResult:
        """
        Re-check the signed-in identity immediately.

        The recheck publishes its state like any other trigger; the outcome
        only reflects what the billing authority said.
        """
        identity = self._identity.current()
        if not identity:
            return VerificationResult(VerificationOutcome.SIGN_IN_REQUIRED, self._resolver.state)

        resolution = await self._resolver.refresh(identity)

        if not resolution.remote_succeeded:
            outcome = VerificationOutcome.CONNECTION_ERROR
        elif resolution.has_active_remote_subscription:
            outcome = VerificationOutcome.VERIFIED
        else:
            outcome = VerificationOutcome.NO_SUBSCRIPTION

        logger.info(f"Restore for {identity}: {outcome.value}")
        return VerificationResult(outcome, resolution.state)

    async def verify_email(self, email: str) -> VerificationResult:
        """
        Sign in with an email that claims an existing subscription, then
        verify it. Rolls the sign-in back unless the subscription is active.
        """
        try:
            identity = normalize_email(email)
        except ValueError:
            return VerificationResult(VerificationOutcome.INVALID_EMAIL, self._resolver.state)

        await self._identity.sign_in(identity)
        try:
            result = await self.restore()
        except Exception:
            await self._identity.sign_out()
            raise

        if not result.success:
            logger.info(f"Rolling back sign-in for {identity}: {result.outcome.value}")
            await self._identity.sign_out()
        return result
