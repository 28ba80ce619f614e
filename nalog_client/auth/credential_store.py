"""
Credential store for the tax service client.

Holds the identity and the token pair of one client instance. Reads return
immutable snapshots; writes replace identity and credential together.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from nalog_shared.exceptions import IncompleteCredentialError
from nalog_shared.models import AuthInfo, Credential, Identity

logger = logging.getLogger(__name__)

DEVICE_ID_LENGTH = 21


def create_device_id() -> str:
    """Generate the 21 character device identifier the service requires for login."""
    return uuid.uuid4().hex[:DEVICE_ID_LENGTH]


class CredentialStore:
    """
    Owned, per-client holder of the current Identity and Credential.

    Only the authenticator replaces state; everything else reads snapshots.
    """

    def __init__(
        self,
        device_id: Optional[str] = None,
        inn: Optional[str] = None,
        token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ):
        self._identity = Identity(id=inn)
        self._credential = Credential(
            device_id=device_id or create_device_id(),
            token=token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    @property
    def device_id(self) -> str:
        return self._credential.device_id

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def inn(self) -> Optional[str]:
        return self._identity.id

    def snapshot(self) -> Tuple[Identity, Credential]:
        """Get identity and credential as one consistent pair."""
        return self._identity, self._credential

    def replace(self, identity: Identity, credential: Credential) -> None:
        """
        Replace identity and credential in one step.

        Args:
            identity: New identity
            credential: New credential; must keep this store's device ID
        """
        if credential.device_id != self._credential.device_id:
            raise ValueError("Device ID cannot change during a session")

        self._identity = identity
        self._credential = credential
        logger.debug(f"Credential replaced (expires at {credential.expires_at})")

    def has_refresh_token(self) -> bool:
        return bool(self._credential.refresh_token)

    def is_token_fresh(self, margin_seconds: float, now: Optional[datetime] = None) -> bool:
        """
        Check whether the access token stays valid for at least the margin.

        Args:
            margin_seconds: Required remaining lifetime
            now: Reference time (defaults to the current UTC time)

        Returns:
            True if the token can be used as-is
        """
        credential = self._credential
        if not credential.token or credential.expires_at is None:
            return False

        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=margin_seconds) < credential.expires_at

    def get_auth_info(self) -> AuthInfo:
        """
        Export the current session.

        Returns:
            Session snapshot suitable for persisting and resuming

        Raises:
            IncompleteCredentialError: If token, refresh token or expiry is missing
        """
        credential = self._credential
        missing = [
            name for name, value in (
                ('token', credential.token),
                ('refresh_token', credential.refresh_token),
                ('expires_at', credential.expires_at),
            )
            if not value
        ]
        if missing:
            raise IncompleteCredentialError(missing_fields=missing)

        return AuthInfo(
            token=credential.token,
            refresh_token=credential.refresh_token,
            token_expires_at=credential.expires_at,
            device_id=credential.device_id,
            inn=self._identity.id,
        )
