"""
Session storage for the Loyalty Dashboard client.

This module persists the access/refresh token pair. The secure store uses the
system keyring when available and falls back to an encrypted file; the memory
store keeps the pair for the lifetime of the process.

All stores report failures through ``StoreResult``/``SessionLookup`` instead of
raising, so callers check the ``success`` flag.
"""

import os
import json
import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from loyalty_shared.interfaces import ISessionStore
from loyalty_shared.models import SessionLookup, StoreResult

logger = logging.getLogger(__name__)

SESSION_KEY = "session"


class MemorySessionStore(ISessionStore):
    """Process-local session store."""

    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        self._access_token = access_token
        self._refresh_token = refresh_token

    async def get_auth_cookies(self) -> SessionLookup:
        return SessionLookup.from_tokens(self._access_token, self._refresh_token)

    async def set_auth_cookies(self, access_token: str, refresh_token: str) -> StoreResult:
        if not access_token or not refresh_token:
            return StoreResult(success=False, error="Both tokens are required")
        self._access_token = access_token
        self._refresh_token = refresh_token
        return StoreResult(success=True, message="Session stored")

    async def delete_all_cookies(self) -> StoreResult:
        self._access_token = None
        self._refresh_token = None
        return StoreResult(success=True, message="Session cleared")


class SecureSessionStore(ISessionStore):
    """
    Secure storage for the dashboard session.

    Uses the system keyring when available, falls back to a Fernet-encrypted
    file. Both tokens are written as a single record so a reader never sees
    a half-updated session.
    """

    def __init__(
        self,
        service_name: str = "loyalty-dashboard",
        storage_path: Optional[str] = None,
        use_keyring: bool = True
    ):
        self.service_name = service_name
        self.keyring_available = use_keyring and self._check_keyring_availability()
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Session storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is usable."""
        try:
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'loyalty-dashboard'
        else:
            config_dir = Path.home() / '.config' / 'loyalty-dashboard'
        return config_dir / 'session.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key kept beside the session file."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _encrypt_data(self, data: str) -> bytes:
        return Fernet(self._get_encryption_key()).encrypt(data.encode())

    def _decrypt_data(self, encrypted_data: bytes) -> str:
        return Fernet(self._get_encryption_key()).decrypt(encrypted_data).decode()

    def _read_record(self) -> Optional[Dict[str, Any]]:
        if self.keyring_available:
            value = keyring.get_password(self.service_name, SESSION_KEY)
            return json.loads(value) if value else None

        if not self.storage_path.exists():
            return None
        encrypted_data = self.storage_path.read_bytes()
        return json.loads(self._decrypt_data(encrypted_data))

    def _write_record(self, record: Dict[str, Any]) -> None:
        value = json.dumps(record)

        if self.keyring_available:
            keyring.set_password(self.service_name, SESSION_KEY, value)
            return

        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_path.with_suffix('.tmp')
        tmp_path.write_bytes(self._encrypt_data(value))
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.storage_path)

    def _remove_record(self) -> None:
        if self.keyring_available:
            try:
                keyring.delete_password(self.service_name, SESSION_KEY)
            except PasswordDeleteError:
                pass  # nothing stored
            return

        if self.storage_path.exists():
            self.storage_path.unlink()

    async def get_auth_cookies(self) -> SessionLookup:
        """
        Read the stored session.

        Returns:
            SessionLookup with ``success=True`` only when both tokens exist
        """
        try:
            record = await asyncio.to_thread(self._read_record)
        except (InvalidToken, ValueError, KeyringError, OSError) as e:
            logger.warning(f"Failed to read stored session: {e}")
            return SessionLookup()

        if not isinstance(record, dict):
            if record is not None:
                logger.warning("Stored session is not a record, ignoring it")
            return SessionLookup()
        return SessionLookup.from_tokens(record.get('access_token'), record.get('refresh_token'))

    async def set_auth_cookies(self, access_token: str, refresh_token: str) -> StoreResult:
        """
        Store both tokens.

        Args:
            access_token: New access token
            refresh_token: New refresh token

        Returns:
            StoreResult describing the write
        """
        if not access_token or not refresh_token:
            return StoreResult(success=False, error="Both tokens are required")

        record = {
            'access_token': access_token,
            'refresh_token': refresh_token,
            'stored_at': datetime.now().isoformat()
        }

        try:
            await asyncio.to_thread(self._write_record, record)
        except Exception as e:
            logger.error(f"Failed to store session: {e}")
            return StoreResult(success=False, error="Something went wrong, try again.")

        logger.debug("Session stored")
        return StoreResult(success=True, message="Session stored")

    async def delete_all_cookies(self) -> StoreResult:
        """
        Destroy the stored session. Succeeds when nothing is stored.
        """
        try:
            await asyncio.to_thread(self._remove_record)
        except Exception as e:
            logger.error(f"Failed to delete session: {e}")
            return StoreResult(success=False, error="Something went wrong, try again.")

        logger.debug("Session deleted")
        return StoreResult(success=True, message="Session cleared")


def build_session_store(config) -> ISessionStore:
    """
    Create the session store selected by configuration.

    Args:
        config: ClientConfiguration instance

    Returns:
        Session store implementation
    """
    backend = config.get_session_backend()

    if backend == 'memory':
        return MemorySessionStore()

    return SecureSessionStore(
        service_name=config.get_session_service_name(),
        storage_path=config.get_session_storage_path(),
        use_keyring=(backend == 'keyring')
    )
