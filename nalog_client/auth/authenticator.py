"""
Authenticator for the tax service client.

This module implements the password login, the two-phase SMS login and the
token renewal protocol. All three mutate the credential store and therefore
run through one shared single-flight slot: concurrent callers never trigger
a second login or renewal while one is pending.
"""

import logging
from typing import Optional, Dict, Any

from nalog_shared.exceptions import AuthenticationFailure, ErrorCode, NotAuthenticatedError
from nalog_shared.logging_config import AuditLogger
from nalog_shared.models import (
    AuthState, Credential, DeviceInfo, Identity, SmsChallenge, parse_timestamp
)
from nalog_client.auth.credential_store import CredentialStore
from nalog_client.auth.single_flight import SingleFlight
from nalog_client.config import ClientConfiguration
from nalog_client.transport import HttpTransport

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Authentication failed"

OP_LOGIN = "login"
OP_SMS_VERIFY = "sms_verify"
OP_RENEW = "renew"


class Authenticator:
    """
    Drives the credential lifecycle:
    Unauthenticated -> Authenticating -> Authenticated -> Renewing -> Authenticated.
    """

    def __init__(
        self,
        store: CredentialStore,
        transport: HttpTransport,
        config: ClientConfiguration,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.store = store
        self.transport = transport
        self.config = config
        self.audit = audit_logger or AuditLogger()
        self._flight = SingleFlight()

    @property
    def state(self) -> AuthState:
        """Current lifecycle state."""
        if self._flight.in_flight:
            if self._flight.label == OP_RENEW:
                return AuthState.RENEWING
            return AuthState.AUTHENTICATING
        if self.store.credential.token:
            return AuthState.AUTHENTICATED
        return AuthState.UNAUTHENTICATED

    @property
    def in_flight(self) -> bool:
        return self._flight.in_flight

    async def wait_for_pending(self) -> None:
        """Join the pending login/renewal, if any; its failure propagates."""
        await self._flight.wait()

    def device_info(self) -> DeviceInfo:
        return DeviceInfo(
            source_device_id=self.store.device_id,
            app_version=self.config.get_app_version(),
            user_agent=self.config.get_user_agent(),
            source_type=self.config.get_source_type(),
        )

    def _url(self, path: str) -> str:
        return f"{self.config.get_api_url()}/{path.lstrip('/')}"

    async def login(self, login: str, password: str) -> Credential:
        """
        Log in with INN/login and password.

        Args:
            login: Taxpayer login (usually the INN)
            password: Account password

        Returns:
            The new credential (or the result of a login already in flight)

        Raises:
            AuthenticationFailure: If the service does not issue a refresh token
            TransportFailure: On network or decoding errors
        """
        async def _login() -> Credential:
            logger.info("Authenticating with password")
            response = await self.transport.request_json(
                'POST',
                self._url('/auth/lkfl'),
                payload={
                    'username': login,
                    'password': password,
                    'deviceInfo': self.device_info().to_payload(),
                },
                headers=self.transport.build_headers(referrer=self.config.get_referrer()),
                check_status=False
            )
            return self._apply_login_response(response, method="password")

        return await self._flight.run(OP_LOGIN, _login)

    async def request_sms_code(self, phone: str) -> SmsChallenge:
        """
        Start an SMS login: the service texts a code to the phone.

        This does not touch the credential store and is not single-flight.

        Args:
            phone: Phone number in the service's format, e.g. 79000000000

        Returns:
            Challenge to pass back to verify_sms_code together with the code
        """
        logger.info("Requesting SMS login code")
        response = await self.transport.request_json(
            'POST',
            self._url('/auth/challenge/sms/start'),
            payload={
                'phone': phone,
                'requireTpToBeActive': True,
            },
            headers=self.transport.build_headers(referrer=self.config.get_referrer()),
            check_status=False
        )

        challenge_token = response.get('challengeToken') if isinstance(response, dict) else None
        if not challenge_token:
            message = _server_message(response) or "SMS challenge was not issued"
            self.audit.log_sms_challenge(self.store.device_id, success=False, failure_reason=message)
            raise AuthenticationFailure(
                message,
                error_code=ErrorCode.AUTH_CHALLENGE_FAILED,
                response=response
            )

        self.audit.log_sms_challenge(self.store.device_id, success=True)
        return SmsChallenge(challenge_token=challenge_token, phone=phone, device_id=self.store.device_id)

    async def verify_sms_code(self, code: str, challenge_token: str, phone: str) -> Credential:
        """
        Complete an SMS login.

        Args:
            code: Code received by SMS
            challenge_token: Token from request_sms_code
            phone: Same phone number used to start the challenge

        Returns:
            The new credential (or the result of an operation already in flight)
        """
        async def _verify() -> Credential:
            logger.info("Verifying SMS login code")
            response = await self.transport.request_json(
                'POST',
                self._url('/auth/challenge/sms/verify'),
                payload={
                    'challengeToken': challenge_token,
                    'phone': phone,
                    'code': code,
                    'deviceInfo': self.device_info().to_payload(),
                },
                headers=self.transport.build_headers(referrer=self.config.get_referrer()),
                check_status=False
            )
            return self._apply_login_response(response, method="sms")

        return await self._flight.run(OP_SMS_VERIFY, _verify)

    async def renew(self) -> Credential:
        """
        Exchange the stored refresh token for a new access token.

        Returns:
            The renewed credential (or the result of an operation already in flight)

        Raises:
            NotAuthenticatedError: If there is no refresh token to renew with
            AuthenticationFailure: If the service does not issue a token
        """
        async def _renew() -> Credential:
            refresh_token = self.store.credential.refresh_token
            if not refresh_token:
                raise NotAuthenticatedError()

            logger.info("Renewing access token")
            response = await self.transport.request_json(
                'POST',
                self._url('/auth/token'),
                payload={
                    'deviceInfo': self.device_info().to_payload(),
                    'refreshToken': refresh_token,
                },
                headers=self.transport.build_headers(referrer=self.config.get_token_referrer()),
                check_status=False
            )
            return self._apply_renewal_response(response)

        return await self._flight.run(OP_RENEW, _renew)

    def adopt_identity(self, inn: str) -> None:
        """Record the INN from a profile lookup, keeping the current credential."""
        _, credential = self.store.snapshot()
        self.store.replace(Identity(id=inn), credential)
        logger.info(f"Identity resolved from profile as {inn}")

    def _apply_login_response(self, response: Any, method: str) -> Credential:
        """Validate a login/verify response and replace identity and credential."""
        body: Dict[str, Any] = response if isinstance(response, dict) else {}

        if not body.get('refreshToken') or not body.get('token'):
            message = _server_message(body) or DEFAULT_FAILURE_MESSAGE
            self.audit.log_authentication(method, self.store.device_id, success=False, failure_reason=message)
            raise AuthenticationFailure(message, error_code=ErrorCode.AUTH_LOGIN_FAILED, response=response)

        profile = body.get('profile') or {}
        inn = profile.get('inn') or self.store.inn

        credential = Credential(
            device_id=self.store.device_id,
            token=body['token'],
            refresh_token=body['refreshToken'],
            expires_at=parse_timestamp(body.get('tokenExpireIn')),
        )
        self.store.replace(Identity(id=inn), credential)

        self.audit.log_authentication(method, self.store.device_id, inn=inn, success=True)
        logger.info(f"Authenticated as {inn} via {method}")
        return credential

    def _apply_renewal_response(self, response: Any) -> Credential:
        """Validate a renewal response and replace the token, keeping the identity."""
        body: Dict[str, Any] = response if isinstance(response, dict) else {}
        identity, current = self.store.snapshot()

        if not body.get('token'):
            message = _server_message(body) or "Token renewal failed"
            self.audit.log_token_renewal(current.device_id, inn=identity.id, success=False, failure_reason=message)
            raise AuthenticationFailure(message, error_code=ErrorCode.AUTH_RENEWAL_FAILED, response=response)

        new_refresh_token = body.get('refreshToken')
        credential = Credential(
            device_id=current.device_id,
            token=body['token'],
            refresh_token=new_refresh_token or current.refresh_token,
            expires_at=parse_timestamp(body.get('tokenExpireIn')),
        )
        self.store.replace(identity, credential)

        self.audit.log_token_renewal(
            current.device_id,
            inn=identity.id,
            success=True,
            refresh_token_rotated=bool(new_refresh_token)
        )
        return credential


def _server_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        message = body.get('message')
        if message:
            return str(message)
    return None
