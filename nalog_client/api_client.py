"""
Client for the self-employed tax service API.

NalogAPIClient wires the credential store, authenticator, request gateway
and income submission together behind one object. A client is either
resumed from an exported session or logs in with a password, optionally
right away (autologin).
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, Union

from aiohttp import ClientSession

from nalog_shared.interfaces import ISessionStorage, ITaxServiceClient
from nalog_shared.exceptions import ErrorCode, SessionStorageError, handle_exception
from nalog_shared.logging_config import AuditLogger, log_structured_error
from nalog_shared.models import (
    AuthInfo, AuthState, Credential, IncomeParams, SmsChallenge, SubmissionResult, parse_timestamp
)
from nalog_client.auth import credential_store
from nalog_client.auth.authenticator import Authenticator
from nalog_client.auth.credential_store import CredentialStore
from nalog_client.config import ClientConfiguration
from nalog_client.gateway import AuthenticatedGateway
from nalog_client.income import IncomeService, date_to_local_iso
from nalog_client.transport import HttpTransport

logger = logging.getLogger(__name__)


class NalogAPIClient(ITaxServiceClient):
    """
    Session client for one taxpayer account.

    Usage::

        async with NalogAPIClient(login=inn, password=password) as client:
            result = await client.add_income(SingleIncome("Consulting", 150, 2))
    """

    def __init__(
        self,
        inn: Optional[str] = None,
        token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_in: Union[str, datetime, None] = None,
        device_id: Optional[str] = None,
        login: Optional[str] = None,
        password: Optional[str] = None,
        autologin: bool = True,
        config: Optional[ClientConfiguration] = None,
        session: Optional[ClientSession] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.config = config or ClientConfiguration()
        self.audit = audit_logger or AuditLogger()

        self.store = CredentialStore(
            device_id=device_id,
            inn=inn,
            token=token,
            refresh_token=refresh_token,
            expires_at=parse_timestamp(token_expires_in),
        )
        self.transport = HttpTransport(self.config, session=session)
        self.authenticator = Authenticator(self.store, self.transport, self.config, self.audit)
        self.gateway = AuthenticatedGateway(self.store, self.authenticator, self.transport, self.config)
        self.income = IncomeService(self.gateway, self.store, self.config, self.audit)

        self._login = login
        self._password = password
        self._autologin_pending = bool(autologin and login and password)
        self._autologin_task: Optional[asyncio.Task] = None

        if self._autologin_pending:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, autologin deferred to context entry")
            else:
                self._start_autologin()

    async def __aenter__(self):
        """Async context manager entry; runs a deferred autologin."""
        if self._autologin_pending:
            self._autologin_pending = False
            await self.auth(self._login, self._password)
        else:
            await self._join_autologin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.transport.close()

    def _start_autologin(self) -> None:
        self._autologin_pending = False
        self._autologin_task = asyncio.ensure_future(self.auth(self._login, self._password))
        self._autologin_task.add_done_callback(self._on_autologin_done)
        logger.info("Autologin started in background")

    def _on_autologin_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exception = task.exception()
        if exception is not None:
            error = handle_exception(exception, context={'operation': 'autologin'})
            log_structured_error(logger, error, inn=self.store.inn)
            self.audit.log_error(error, inn=self.store.inn)

    async def _join_autologin(self) -> None:
        """Wait for a background autologin that has not started its request yet."""
        task = self._autologin_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    @property
    def state(self) -> AuthState:
        return self.authenticator.state

    @property
    def inn(self) -> Optional[str]:
        return self.store.inn

    @staticmethod
    def create_device_id() -> str:
        """Generate a 21 character device identifier."""
        return credential_store.create_device_id()

    def date_to_local_iso(self, date: Optional[datetime] = None) -> str:
        """Render a moment in the configured (or system local) timezone, truncated to the second."""
        return date_to_local_iso(date, self.config.get_timezone())

    def get_auth_info(self) -> AuthInfo:
        """
        Export the current session.

        Raises:
            IncompleteCredentialError: If the client is not authenticated yet
        """
        return self.store.get_auth_info()

    async def auth(self, login: str, password: str) -> Credential:
        """Log in with taxpayer login (INN) and password."""
        return await self.authenticator.login(login, password)

    async def request_sms_code(self, phone: str) -> SmsChallenge:
        """Ask the service to send a login code to the phone."""
        return await self.authenticator.request_sms_code(phone)

    async def auth_via_sms_code(self, code: str, challenge_token: str, phone: str) -> Credential:
        """Complete an SMS login with the received code."""
        return await self.authenticator.verify_sms_code(code, challenge_token, phone)

    async def get_token(self) -> str:
        """Get an access token, renewing it when it is about to expire."""
        await self._join_autologin()
        return await self.gateway.get_token()

    async def call(self, endpoint: str, payload: Optional[Any] = None, method: Optional[str] = None) -> Any:
        """
        Make an authenticated API call.

        Args:
            endpoint: Path relative to the API root
            payload: JSON body (never sent with GET)
            method: HTTP method; POST with a payload and GET without by default

        Returns:
            Decoded JSON response
        """
        await self._join_autologin()
        return await self.gateway.call(endpoint, payload, method)

    async def add_income(self, params: IncomeParams) -> SubmissionResult:
        """Register income and fetch its receipt."""
        await self._join_autologin()
        return await self.income.add_income(params)

    async def user_info(self) -> Dict[str, Any]:
        """Get the taxpayer profile."""
        return await self.call('user')

    def save_session(self, storage: ISessionStorage) -> AuthInfo:
        """
        Persist the current session.

        Args:
            storage: Session storage backend

        Returns:
            The stored session snapshot
        """
        auth_info = self.get_auth_info()
        storage.store_session(auth_info)
        return auth_info

    @classmethod
    def from_stored_session(cls, storage: ISessionStorage, inn: str, **kwargs) -> 'NalogAPIClient':
        """
        Resume a client from a persisted session.

        Args:
            storage: Session storage backend
            inn: Taxpayer identifier the session was stored under
            **kwargs: Extra constructor arguments (config, session, ...)

        Raises:
            SessionStorageError: If no session is stored for the INN
        """
        auth_info = storage.load_session(inn)
        if auth_info is None:
            raise SessionStorageError(f"No stored session for {inn}", error_code=ErrorCode.STORAGE_READ_FAILED)

        return cls(
            inn=auth_info.inn or inn,
            token=auth_info.token,
            refresh_token=auth_info.refresh_token,
            token_expires_in=auth_info.token_expires_at,
            device_id=auth_info.device_id,
            **kwargs
        )
