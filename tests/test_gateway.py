"""
Unit tests for the authenticated request gateway.
"""

import asyncio
import pytest
from aiohttp import ClientConnectionError

from nalog_shared.exceptions import (
    AuthenticationFailure, ErrorCode, NotAuthenticatedError, TransportFailure
)
from nalog_client.auth.authenticator import Authenticator
from nalog_client.gateway import AuthenticatedGateway, resolve_method

from conftest import INN, authenticated_store, login_body


def make_gateway(store, transport, config, audit_logger):
    authenticator = Authenticator(store, transport, config, audit_logger)
    return AuthenticatedGateway(store, authenticator, transport, config)


class TestResolveMethod:
    """Test HTTP method defaults."""

    def test_defaults(self):
        assert resolve_method() == 'GET'
        assert resolve_method({'a': 1}) == 'POST'

    def test_explicit_method_wins(self):
        assert resolve_method({'a': 1}, 'get') == 'GET'
        assert resolve_method(None, 'PATCH') == 'PATCH'


class TestGetToken:
    """Test token reuse and renewal decisions."""

    @pytest.mark.asyncio
    async def test_reuses_token_valid_beyond_margin(self, transport, config, fake_session, audit_logger):
        gateway = make_gateway(authenticated_store(expires_in=120), transport, config, audit_logger)

        assert await gateway.get_token() == "access-0"
        assert fake_session.requests == []

    @pytest.mark.asyncio
    async def test_renews_token_inside_margin(self, transport, config, fake_session, audit_logger):
        gateway = make_gateway(authenticated_store(expires_in=30), transport, config, audit_logger)
        fake_session.add_route('POST', 'auth/token', login_body(token="access-2"))

        assert await gateway.get_token() == "access-2"
        assert len(fake_session.requests_to('POST', 'auth/token')) == 1

    @pytest.mark.asyncio
    async def test_renews_expired_token(self, transport, config, fake_session, audit_logger):
        gateway = make_gateway(authenticated_store(expires_in=-600), transport, config, audit_logger)
        fake_session.add_route('POST', 'auth/token', login_body(token="access-2"))

        assert await gateway.get_token() == "access-2"

    @pytest.mark.asyncio
    async def test_margin_is_configurable(self, transport, config, fake_session, audit_logger):
        config.set_override('session.token_refresh_margin', 300)
        gateway = make_gateway(authenticated_store(expires_in=120), transport, config, audit_logger)
        fake_session.add_route('POST', 'auth/token', login_body(token="access-2"))

        assert await gateway.get_token() == "access-2"

    @pytest.mark.asyncio
    async def test_not_authenticated_without_refresh_token(self, gateway, fake_session):
        with pytest.raises(NotAuthenticatedError):
            await gateway.get_token()

        assert fake_session.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_calls_renew_once(self, transport, config, fake_session, audit_logger):
        gateway = make_gateway(authenticated_store(expires_in=10), transport, config, audit_logger)
        fake_session.add_route('POST', 'auth/token', login_body(token="access-2"))
        fake_session.add_route('GET', 'user', {'inn': INN})

        results = await asyncio.gather(*[gateway.call('user') for _ in range(5)])

        assert results == [{'inn': INN}] * 5
        assert len(fake_session.requests_to('POST', 'auth/token')) == 1

    @pytest.mark.asyncio
    async def test_waits_for_login_in_flight(self, gateway, authenticator, fake_session):
        fake_session.add_route('POST', 'auth/lkfl', login_body(token="fresh-login"))
        fake_session.add_route('GET', 'user', {'inn': INN})
        release = fake_session.hold('POST', 'auth/lkfl')

        login = asyncio.ensure_future(authenticator.login(INN, "secret"))
        await asyncio.sleep(0.01)
        call = asyncio.ensure_future(gateway.call('user'))
        await asyncio.sleep(0.01)
        assert fake_session.requests_to('GET', 'user') == []

        release.set()
        await login

        assert await call == {'inn': INN}
        request = fake_session.requests_to('GET', 'user')[0]
        assert request['headers']['Authorization'] == "Bearer fresh-login"
        assert fake_session.requests_to('POST', 'auth/token') == []

    @pytest.mark.asyncio
    async def test_login_failure_reaches_waiting_call(self, gateway, authenticator, fake_session):
        fake_session.add_route('POST', 'auth/lkfl', {'message': "Wrong password"})
        release = fake_session.hold('POST', 'auth/lkfl')

        login = asyncio.ensure_future(authenticator.login(INN, "wrong"))
        await asyncio.sleep(0.01)
        call = asyncio.ensure_future(gateway.call('user'))
        await asyncio.sleep(0.01)
        release.set()

        with pytest.raises(AuthenticationFailure):
            await login
        with pytest.raises(AuthenticationFailure):
            await call


class TestCall:
    """Test request shaping and error wrapping."""

    @pytest.fixture
    def ready_gateway(self, transport, config, audit_logger):
        return make_gateway(authenticated_store(), transport, config, audit_logger)

    @pytest.mark.asyncio
    async def test_get_without_payload(self, ready_gateway, fake_session):
        fake_session.add_route('GET', 'user', {'inn': INN})

        assert await ready_gateway.call('user') == {'inn': INN}

        request = fake_session.requests[0]
        assert request['method'] == 'GET'
        assert request['data'] is None
        assert request['headers']['Authorization'] == "Bearer access-0"
        assert request['headers']['Referer'] == "https://lknpd.nalog.ru/sales/create"
        assert request['headers']['Accept-Language'] == "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7"
        assert request['headers']['Accept'] == "application/json, text/plain, */*"

    @pytest.mark.asyncio
    async def test_payload_defaults_to_post(self, ready_gateway, fake_session):
        fake_session.add_route('POST', 'income', {'approvedReceiptUuid': "r1"})

        await ready_gateway.call('income', {'totalAmount': "1.00"})

        assert fake_session.requests[0]['method'] == 'POST'
        assert fake_session.requests[0]['json'] == {'totalAmount': "1.00"}

    @pytest.mark.asyncio
    async def test_explicit_get_never_sends_body(self, ready_gateway, fake_session):
        fake_session.add_route('GET', 'incomes', [])

        await ready_gateway.call('incomes', {'limit': 10}, 'GET')

        assert fake_session.requests[0]['method'] == 'GET'
        assert fake_session.requests[0]['data'] is None

    @pytest.mark.asyncio
    async def test_non_2xx_status(self, ready_gateway, fake_session):
        fake_session.add_route('GET', 'user', {'message': "Forbidden"}, status=403)

        with pytest.raises(TransportFailure) as exc_info:
            await ready_gateway.call('user')

        assert exc_info.value.status_code == 403
        assert exc_info.value.payload == {'message': "Forbidden"}
        assert exc_info.value.error_code == ErrorCode.NETWORK_HTTP_STATUS

    @pytest.mark.asyncio
    async def test_malformed_json(self, ready_gateway, fake_session):
        fake_session.add_route('GET', 'user', "not json")

        with pytest.raises(TransportFailure) as exc_info:
            await ready_gateway.call('user')

        assert exc_info.value.error_code == ErrorCode.NETWORK_INVALID_JSON
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self, ready_gateway, fake_session):
        error = ClientConnectionError("connection reset")
        fake_session.add_route('GET', 'user', error)

        with pytest.raises(TransportFailure) as exc_info:
            await ready_gateway.call('user')

        assert exc_info.value.__cause__ is error
        assert len(fake_session.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, ready_gateway, fake_session):
        fake_session.add_route('GET', 'user', asyncio.TimeoutError())

        with pytest.raises(TransportFailure) as exc_info:
            await ready_gateway.call('user')

        assert exc_info.value.error_code == ErrorCode.NETWORK_TIMEOUT

    @pytest.mark.asyncio
    async def test_fetch_json_is_unauthenticated(self, ready_gateway, fake_session):
        url = "https://lknpd.nalog.ru/api/v1/receipt/1/2/json"
        fake_session.add_route('GET', url, {'receipt': True})

        assert await ready_gateway.fetch_json(url) == {'receipt': True}
        assert 'Authorization' not in fake_session.requests[0]['headers']
