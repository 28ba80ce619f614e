"""
Shared fixtures for the tax service client tests.

The aiohttp session is replaced by FakeSession, which answers requests from
a route table and records everything that was sent.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from nalog_shared.logging_config import AuditLogger
from nalog_client.auth.authenticator import Authenticator
from nalog_client.auth.credential_store import CredentialStore
from nalog_client.config import ClientConfiguration
from nalog_client.gateway import AuthenticatedGateway
from nalog_client.transport import HttpTransport

API_URL = "https://lknpd.nalog.ru/api/v1"
DEVICE_ID = "abcdefghij0123456789k"
INN = "123456789012"


def iso_in(seconds: float) -> str:
    """Service-style timestamp ``seconds`` from now."""
    moment = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


def login_body(token: str = "access-1", refresh_token: str = "refresh-1",
               expires_in: float = 3600, inn: str = INN) -> Dict[str, Any]:
    return {
        'refreshToken': refresh_token,
        'token': token,
        'tokenExpireIn': iso_in(expires_in),
        'profile': {'inn': inn},
    }


class FakeResponse:
    def __init__(self, status: int, body: str):
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body


class FakeRequest:
    """Async context manager returned by FakeSession.request."""

    def __init__(self, session: 'FakeSession', method: str, url: str, kwargs: Dict[str, Any]):
        self.session = session
        self.method = method
        self.url = url
        self.kwargs = kwargs

    async def __aenter__(self) -> FakeResponse:
        return await self.session._respond(self.method, self.url)

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Minimal stand-in for aiohttp.ClientSession."""

    def __init__(self):
        self.closed = False
        self.requests: List[Dict[str, Any]] = []
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self._gates: Dict[Tuple[str, str], asyncio.Event] = {}

    async def close(self):
        self.closed = True

    def add_route(self, method: str, path: str, body: Any, status: int = 200) -> None:
        """
        Queue a response for ``method path`` (path relative to the API root,
        or an absolute URL). The last queued response repeats.

        ``body`` may be a dict/list (sent as JSON), a str (sent raw) or an
        exception instance (raised on request).
        """
        self._routes.setdefault((method.upper(), self._url(path)), []).append((status, body))

    def hold(self, method: str, path: str) -> asyncio.Event:
        """Block responses for the route until the returned event is set."""
        event = asyncio.Event()
        self._gates[(method.upper(), self._url(path))] = event
        return event

    def request(self, method: str, url: str, **kwargs) -> FakeRequest:
        self.requests.append({
            'method': method,
            'url': url,
            'headers': kwargs.get('headers', {}),
            'data': kwargs.get('data'),
            'json': json.loads(kwargs['data']) if kwargs.get('data') else None,
        })
        return FakeRequest(self, method, url, kwargs)

    def requests_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        url = self._url(path)
        return [r for r in self.requests if r['method'] == method.upper() and r['url'] == url]

    async def _respond(self, method: str, url: str) -> FakeResponse:
        key = (method.upper(), url)
        gate = self._gates.get(key)
        if gate is not None:
            await gate.wait()

        queue = self._routes.get(key)
        if not queue:
            return FakeResponse(404, json.dumps({'message': f'No route for {method} {url}'}))

        status, body = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(body, BaseException):
            raise body
        text = body if isinstance(body, str) else json.dumps(body)
        return FakeResponse(status, text)

    @staticmethod
    def _url(path: str) -> str:
        if path.startswith('http'):
            return path
        return f"{API_URL}/{path.lstrip('/')}"


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Configuration isolated from the user's file and environment."""
    for env_var in ClientConfiguration.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)
    return ClientConfiguration(config_file=str(tmp_path / 'client.conf'))


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def audit_logger():
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def transport(config, fake_session):
    return HttpTransport(config, session=fake_session)


@pytest.fixture
def store():
    return CredentialStore(device_id=DEVICE_ID)


@pytest.fixture
def authenticator(store, transport, config, audit_logger):
    return Authenticator(store, transport, config, audit_logger)


@pytest.fixture
def gateway(store, authenticator, transport, config):
    return AuthenticatedGateway(store, authenticator, transport, config)


def authenticated_store(expires_in: float = 3600, refresh_token: Optional[str] = "refresh-0") -> CredentialStore:
    """Store resumed from a session whose token expires in ``expires_in`` seconds."""
    return CredentialStore(
        device_id=DEVICE_ID,
        inn=INN,
        token="access-0" if refresh_token else None,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
