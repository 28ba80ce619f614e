"""
Authenticated request gateway.

Every call to a protected endpoint goes through here: the gateway makes sure
a usable access token exists (waiting for a pending login, or renewing a
stale token) before the request is sent.
"""

import logging
from typing import Optional, Any

from nalog_shared.exceptions import NotAuthenticatedError
from nalog_client.auth.authenticator import Authenticator
from nalog_client.auth.credential_store import CredentialStore
from nalog_client.config import ClientConfiguration
from nalog_client.transport import HttpTransport

logger = logging.getLogger(__name__)


def resolve_method(payload: Any = None, method: Optional[str] = None) -> str:
    """POST when a payload is given and no method is named, GET otherwise."""
    if method:
        return method.upper()
    return 'POST' if payload is not None else 'GET'


class AuthenticatedGateway:
    """
    Dispatches bearer-authenticated requests to the service API.
    """

    def __init__(
        self,
        store: CredentialStore,
        authenticator: Authenticator,
        transport: HttpTransport,
        config: ClientConfiguration
    ):
        self.store = store
        self.authenticator = authenticator
        self.transport = transport
        self.config = config

    async def get_token(self) -> str:
        """
        Get an access token valid for at least the refresh margin.

        Returns:
            Access token

        Raises:
            NotAuthenticatedError: If there is no token and nothing to renew with
            AuthenticationFailure: If a pending login or the renewal fails
        """
        if self.authenticator.in_flight:
            logger.debug("Waiting for pending authentication before dispatch")
            await self.authenticator.wait_for_pending()

        margin = self.config.get_token_refresh_margin()
        if self.store.is_token_fresh(margin):
            return self.store.credential.token

        if not self.store.has_refresh_token():
            raise NotAuthenticatedError()

        logger.info("Access token is missing or about to expire, renewing")
        credential = await self.authenticator.renew()
        return credential.token

    async def call(self, endpoint: str, payload: Any = None, method: Optional[str] = None) -> Any:
        """
        Call a protected API endpoint.

        Args:
            endpoint: Path relative to the API root, e.g. ``income`` or ``user``
            payload: JSON body; dropped for GET requests
            method: HTTP method (defaults to POST with a payload, GET without)

        Returns:
            Decoded JSON response

        Raises:
            TransportFailure: On network error, non-2xx status or invalid JSON
        """
        token = await self.get_token()
        http_method = resolve_method(payload, method)
        url = f"{self.config.get_api_url()}/{endpoint.lstrip('/')}"

        return await self.transport.request_json(
            http_method,
            url,
            payload=payload if http_method != 'GET' else None,
            headers=self.transport.build_headers(
                referrer=self.config.get_call_referrer(),
                token=token
            )
        )

    async def fetch_json(self, url: str) -> Any:
        """Fetch a public JSON document (no bearer token)."""
        return await self.transport.request_json(
            'GET',
            url,
            headers=self.transport.build_headers(referrer=self.config.get_call_referrer())
        )
