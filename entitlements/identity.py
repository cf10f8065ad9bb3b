"""
Identity Store - the signed-in billing identity

Holds at most one identity (an email address), persisted locally so it
survives restarts. Listeners are told whenever it changes; the trigger
layer uses that to re-resolve entitlement. File writes run in a worker
thread and sign-in/sign-out are serialized, so the last call wins.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from entitlements.errors import StoreFailure
from entitlements.models import utc_now

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


class IdentityProvider(Protocol):
    """What the entitlement engine needs from the session collaborator"""

    def current(self) -> Optional[str]: ...

    async def sign_out(self) -> None: ...


def normalize_email(email: str) -> str:
    """
    Trim and lowercase an email, rejecting obviously invalid input.

    Raises:
        ValueError: if the email is empty or has no '@'
    """
    trimmed = (email or "").strip().lower()
    if not trimmed:
        raise ValueError("Email is required")
    if "@" not in trimmed:
        raise ValueError("Please enter a valid email address")
    return trimmed


class IdentityStore:
    """File-backed current identity with change notification"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._identity: Optional[str] = None
        self._listeners: List[IdentityListener] = []
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        """Load stored identity"""
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            self._identity = data.get('email') or None
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load signed-in identity: {e}")

    def current(self) -> Optional[str]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _write(self, identity: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump({'email': identity, 'created_at': utc_now().isoformat()}, f, indent=2)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._identity)
            except Exception as e:
                logger.error(f"Identity listener failed: {e}")

    async def sign_in(self, email: str) -> str:
        """
        Replace the stored identity.

        Returns:
            The normalized identity

        Raises:
            ValueError: on invalid email
            StoreFailure: if the identity could not be persisted
        """
        identity = normalize_email(email)
        async with self._lock:
            try:
                await asyncio.to_thread(self._write, identity)
            except OSError as e:
                raise StoreFailure(f"Failed to sign in: {e}") from e

            changed = identity != self._identity
            self._identity = identity
        logger.info(f"Signed in as {identity}")
        if changed:
            self._notify()
        return identity

    async def sign_out(self) -> None:
        """Forget the stored identity"""
        async with self._lock:
            if self._identity is None and not self.path.exists():
                return

            try:
                await asyncio.to_thread(self.path.unlink, missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to remove stored identity: {e}")

            self._identity = None
        logger.info("Signed out")
        self._notify()
