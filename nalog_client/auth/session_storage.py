"""
Secure session storage for the tax service client.

This module persists exported sessions (see ``get_auth_info``) so a client
can be resumed without logging in again. Sessions live in the system keyring
when available, otherwise in a Fernet-encrypted file.
"""

import os
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from nalog_shared.exceptions import ErrorCode, SessionStorageError, ValidationError
from nalog_shared.interfaces import ISessionStorage
from nalog_shared.models import AuthInfo

logger = logging.getLogger(__name__)


class SecureSessionStorage(ISessionStorage):
    """
    Secure storage for exported sessions, keyed by taxpayer INN.

    Uses the system keyring when available, falls back to encrypted file storage.
    """

    def __init__(
        self,
        service_name: str = "nalog-client",
        storage_path: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        self.keyring_available = self._check_keyring_availability() if use_keyring is None else use_keyring
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()
        self.key_path = self.storage_path.with_suffix('.key')

        logger.info(f"Session storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is usable."""
        try:
            test_key = f"{self.service_name}_availability_check"
            keyring.set_password(self.service_name, test_key, "check")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "check"
        except (KeyringError, RuntimeError) as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'nalog-client'
        else:
            config_dir = Path.home() / '.config' / 'nalog-client'
        return config_dir / 'sessions.enc'

    def _get_fernet(self) -> Fernet:
        """Load or create the file encryption key."""
        if self.key_path.exists():
            key = self.key_path.read_bytes()
        else:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            key = Fernet.generate_key()
            self.key_path.write_bytes(key)
            os.chmod(self.key_path, 0o600)
        return Fernet(key)

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        if not self.storage_path.exists():
            return {}
        try:
            decrypted = self._get_fernet().decrypt(self.storage_path.read_bytes())
            return json.loads(decrypted.decode())
        except (InvalidToken, ValueError, OSError) as e:
            raise SessionStorageError(
                f"Failed to read session file {self.storage_path}: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

    def _write_all(self, sessions: Dict[str, Dict[str, Any]]) -> None:
        if not sessions:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        encrypted = self._get_fernet().encrypt(json.dumps(sessions).encode())
        self.storage_path.write_bytes(encrypted)
        os.chmod(self.storage_path, 0o600)

    def store_session(self, auth_info: AuthInfo) -> None:
        """
        Store a session securely.

        Args:
            auth_info: Exported session; must carry the INN it belongs to
        """
        if not auth_info.inn:
            raise ValidationError("Cannot store a session without INN", field_name="inn")

        record = auth_info.to_dict()
        record['stored_at'] = datetime.now().isoformat()

        try:
            if self.keyring_available:
                keyring.set_password(self.service_name, f"session_{auth_info.inn}", json.dumps(record))
            else:
                sessions = self._read_all()
                sessions[auth_info.inn] = record
                self._write_all(sessions)
        except (KeyringError, OSError) as e:
            logger.error(f"Failed to store session: {e}")
            raise SessionStorageError(f"Failed to store session: {e}", cause=e)

        logger.info(f"Session stored securely for {auth_info.inn}")

    def load_session(self, inn: str) -> Optional[AuthInfo]:
        """
        Retrieve a stored session.

        Args:
            inn: Taxpayer identifier

        Returns:
            Session snapshot or None if nothing is stored
        """
        try:
            if self.keyring_available:
                value = keyring.get_password(self.service_name, f"session_{inn}")
                record = json.loads(value) if value else None
            else:
                record = self._read_all().get(inn)
        except (KeyringError, ValueError) as e:
            raise SessionStorageError(
                f"Failed to load session: {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

        if record is None:
            logger.info(f"No stored session found for {inn}")
            return None

        try:
            return AuthInfo.from_dict(record)
        except KeyError as e:
            raise SessionStorageError(
                f"Stored session for {inn} is missing {e}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

    def remove_session(self, inn: str) -> bool:
        """
        Remove a stored session.

        Args:
            inn: Taxpayer identifier

        Returns:
            True if a session was removed
        """
        if self.keyring_available:
            try:
                keyring.delete_password(self.service_name, f"session_{inn}")
                return True
            except PasswordDeleteError:
                return False

        sessions = self._read_all()
        if inn not in sessions:
            return False
        del sessions[inn]
        self._write_all(sessions)
        return True

    def list_sessions(self) -> List[Dict[str, Any]]:
        """
        List stored sessions from file storage.

        Keyring does not provide a way to enumerate entries, so this is
        always empty in keyring mode.
        """
        if self.keyring_available:
            return []

        return [
            {
                'inn': inn,
                'device_id': record.get('device_id'),
                'token_expires_in': record.get('token_expires_in'),
                'stored_at': record.get('stored_at'),
            }
            for inn, record in self._read_all().items()
        ]
