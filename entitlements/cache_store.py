"""
Local Subscription Cache - last known subscription per identity

Keeps one ``CachedSubscriptionRecord`` per identity so entitlement can be
resolved offline. Records are written only after a successful remote lookup.

Storage:
- A single Fernet-encrypted JSON document keyed by identity
- Key derived with PBKDF2 from the configured cache secret and salt
- Created on first write, replaced atomically on every write
"""

import asyncio
import base64
import json
import logging
import os
import stat
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from entitlements.errors import StoreFailure
from entitlements.models import CachedSubscriptionRecord, SubscriptionStatus, utc_now

logger = logging.getLogger(__name__)


class LocalCacheStore:
    """
    Durable key-value record of the last known entitlement per identity.

    ``put`` is an idempotent upsert; concurrent writers are serialised so the
    document always holds at most one record per identity.
    ``get`` raises on an unreadable document; ``put`` replaces it.
    """

    FORMAT_PREFIX = b"v1:"

    def __init__(self, path: Path, secret: str, salt: str, iterations: int = 100_000):
        self.path = Path(path)
        self._secret = secret
        self._salt = salt
        self._iterations = iterations
        self._fernet: Optional[Fernet] = None
        self._lock = asyncio.Lock()

    # ========== Encryption ==========

    def _get_fernet(self) -> Fernet:
        """Derive the Fernet key once per store"""
        if self._fernet is None:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=self._salt.encode(),
                iterations=self._iterations,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self._secret.encode()))
            self._fernet = Fernet(key)
        return self._fernet

    def _encrypt(self, data: dict) -> bytes:
        token = self._get_fernet().encrypt(json.dumps(data).encode('utf-8'))
        return self.FORMAT_PREFIX + token

    def _decrypt(self, raw: bytes) -> dict:
        if not raw.startswith(self.FORMAT_PREFIX):
            raise StoreFailure("Subscription cache uses an unknown format")
        try:
            decrypted = self._get_fernet().decrypt(raw[len(self.FORMAT_PREFIX):])
        except InvalidToken as e:
            raise StoreFailure("Subscription cache could not be decrypted") from e
        try:
            data = json.loads(decrypted.decode('utf-8'))
        except ValueError as e:
            raise StoreFailure(f"Subscription cache is corrupt: {e}") from e
        if not isinstance(data, dict):
            raise StoreFailure("Subscription cache is corrupt: expected an object")
        return data

    # ========== File I/O (runs in a worker thread) ==========

    def _read_raw(self) -> Optional[bytes]:
        if not self.path.exists():
            return None
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise StoreFailure(f"Could not read subscription cache: {e}") from e

    def _read_all(self) -> Dict[str, dict]:
        raw = self._read_raw()
        if raw is None:
            return {}
        return self._decrypt(raw)

    def _write_all(self, records: Dict[str, dict]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(self._encrypt(records))
            if os.name != 'nt':
                os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)  # 600
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreFailure(f"Could not write subscription cache: {e}") from e

    def _upsert(self, record: CachedSubscriptionRecord) -> None:
        raw = self._read_raw()
        records: Dict[str, dict] = {}
        if raw is not None:
            try:
                records = self._decrypt(raw)
            except StoreFailure as e:
                # Corrupt or foreign-key documents are replaced, not merged
                logger.warning(f"Replacing unreadable subscription cache: {e.message}")
        records[record.identity] = record.to_dict()
        self._write_all(records)

    # ========== Public API ==========

    async def get(self, identity: str) -> Optional[CachedSubscriptionRecord]:
        """
        Get the cached subscription for an identity.

        Raises:
            StoreFailure: if the cache exists but cannot be read
        """
        records = await asyncio.to_thread(self._read_all)
        data = records.get(identity)
        if data is None:
            return None
        try:
            return CachedSubscriptionRecord.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise StoreFailure(f"Cached record for {identity} is corrupt: {e}") from e

    async def put(
        self,
        identity: str,
        subscribed: bool,
        status: SubscriptionStatus,
        current_period_end: Optional[datetime],
    ) -> None:
        """Insert or replace the record for an identity"""
        record = CachedSubscriptionRecord(
            identity=identity,
            subscribed=subscribed,
            status=SubscriptionStatus(status),
            checked_at=utc_now(),
            current_period_end=current_period_end,
        )
        async with self._lock:
            await asyncio.to_thread(self._upsert, record)
        logger.debug(f"Cached subscription for {identity}: {record.status.value}")

    async def identities(self) -> List[str]:
        """Identities that currently have a cached record"""
        records = await asyncio.to_thread(self._read_all)
        return sorted(records)

    async def clear(self) -> None:
        """Remove every cached record"""
        async with self._lock:
            try:
                await asyncio.to_thread(self.path.unlink, missing_ok=True)
            except OSError as e:
                raise StoreFailure(f"Could not clear subscription cache: {e}") from e
