"""
HTTP transport for the tax service client.

Owns the aiohttp session and shapes requests the way the service's web
frontend sends them: fixed accept/locale headers, referrer metadata and JSON
bodies. Transport-level problems surface as TransportFailure; there is no
retry at this layer.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any

from aiohttp import ClientSession, ClientTimeout, ClientError

from nalog_shared.exceptions import ErrorCode, TransportFailure
from nalog_client.config import ClientConfiguration

logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Thin JSON-over-HTTP layer shared by the authenticator and the gateway.
    """

    def __init__(self, config: ClientConfiguration, session: Optional[ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

        timeout = config.get_timeout()
        # No total timeout unless one is configured
        self.timeout = ClientTimeout(total=timeout)

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_headers(
        self,
        referrer: Optional[str] = None,
        token: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Build browser-like request headers.

        Args:
            referrer: Referer header value (defaults to the site root)
            token: Bearer token, if the request is authenticated

        Returns:
            Header dictionary
        """
        headers = {
            'Accept': 'application/json, text/plain, */*',
            'Accept-Language': self.config.get_accept_language(),
            'Content-Type': 'application/json',
            'Referer': referrer or self.config.get_referrer(),
            'User-Agent': self.config.get_user_agent(),
        }
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    async def request_json(
        self,
        method: str,
        url: str,
        payload: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        check_status: bool = True
    ) -> Any:
        """
        Send a request and decode the JSON response body.

        Args:
            method: HTTP method
            url: Absolute URL
            payload: JSON body; never sent with GET
            headers: Request headers
            check_status: Raise TransportFailure on non-2xx status

        Returns:
            Decoded JSON body

        Raises:
            TransportFailure: On network error, rejected status or invalid JSON
        """
        session = await self._ensure_session()
        method = method.upper()

        request_kwargs: Dict[str, Any] = {'headers': headers or self.build_headers()}
        if method != 'GET' and payload is not None:
            request_kwargs['data'] = json.dumps(payload, ensure_ascii=False)

        logger.debug(f"Making {method} request to {url}")

        try:
            async with session.request(method, url, **request_kwargs) as response:
                status = response.status
                body = await response.text()
        except UnicodeDecodeError as e:
            raise TransportFailure(
                f"Response from {url} is not valid text",
                error_code=ErrorCode.NETWORK_INVALID_JSON,
                status_code=status,
                cause=e
            ) from e
        except asyncio.TimeoutError as e:
            raise TransportFailure(
                f"Request to {url} timed out",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                cause=e
            ) from e
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {method} {url}: {e}")
            raise TransportFailure(f"Request to {url} failed: {e}", cause=e) from e

        if check_status and not 200 <= status < 300:
            raise TransportFailure(
                f"Request to {url} failed with status {status}",
                error_code=ErrorCode.NETWORK_HTTP_STATUS,
                status_code=status,
                payload=_decode_or_text(body)
            )

        try:
            return json.loads(body)
        except ValueError as e:
            raise TransportFailure(
                f"Response from {url} is not valid JSON",
                error_code=ErrorCode.NETWORK_INVALID_JSON,
                status_code=status,
                payload=body,
                cause=e
            ) from e


def _decode_or_text(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body
