"""
Gateway client: timeouts, status mapping and non-JSON bodies.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from tradesync.config.config import GatewayConfig
from tradesync.exceptions import (
    ConfigurationError,
    GatewayPermanentError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    MalformedPayloadError,
    OperationalError,
)
from tradesync.gateway.client import GatewayClient, _format_time


def _mock_session(status: int, body: str):
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)

    request_cm = MagicMock()
    request_cm.__aenter__ = AsyncMock(return_value=response)
    request_cm.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.request.return_value = request_cm

    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=session)
    session_cm.__aexit__ = AsyncMock(return_value=False)
    return session_cm, session


@pytest.fixture
def client():
    return GatewayClient(GatewayConfig(api_token="secret-token", request_timeout_seconds=5))


async def _call_with(client, status, body):
    session_cm, session = _mock_session(status, body)
    with patch("tradesync.gateway.client.aiohttp.TCPConnector"), patch(
        "tradesync.gateway.client.aiohttp.ClientSession", return_value=session_cm
    ) as session_cls:
        result = await client.get_account_state("acc-1")
    return result, session, session_cls


@pytest.mark.asyncio
async def test_success_returns_parsed_json_with_auth_header_and_timeout(client):
    result, session, session_cls = await _call_with(client, 200, '{"state": "DEPLOYED"}')
    assert result == {"state": "DEPLOYED"}

    method, url = session.request.call_args.args
    assert method == "GET"
    assert url.endswith("/users/current/accounts/acc-1")
    assert session.request.call_args.kwargs["headers"]["auth-token"] == "secret-token"
    assert session_cls.call_args.kwargs["timeout"].total == 5


@pytest.mark.asyncio
async def test_empty_body_is_none(client):
    result, _, _ = await _call_with(client, 204, "")
    assert result is None


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(client):
    with pytest.raises(MalformedPayloadError):
        await _call_with(client, 200, "<html>gateway hiccup</html>")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 502, 503])
async def test_retryable_statuses(client, status):
    with pytest.raises(GatewayUnavailableError) as exc_info:
        await _call_with(client, status, "Bad Gateway")
    assert isinstance(exc_info.value, OperationalError)


@pytest.mark.asyncio
async def test_client_error_is_permanent_with_message(client):
    with pytest.raises(GatewayPermanentError) as exc_info:
        await _call_with(client, 400, '{"message": "Invalid server name"}')
    assert exc_info.value.status == 400
    assert "Invalid server name" in str(exc_info.value)


@pytest.mark.asyncio
async def test_timeout_maps_to_operational(client):
    with patch("tradesync.gateway.client.aiohttp.TCPConnector"), patch(
        "tradesync.gateway.client.aiohttp.ClientSession", side_effect=asyncio.TimeoutError()
    ):
        with pytest.raises(GatewayTimeoutError):
            await client.get_positions("acc-1", "london")


@pytest.mark.asyncio
async def test_connection_error_maps_to_unavailable(client):
    with patch("tradesync.gateway.client.aiohttp.TCPConnector"), patch(
        "tradesync.gateway.client.aiohttp.ClientSession", side_effect=aiohttp.ClientConnectionError("refused")
    ):
        with pytest.raises(GatewayUnavailableError):
            await client.get_account_information("acc-1", "london")


@pytest.mark.asyncio
async def test_missing_token_is_configuration_error():
    client = GatewayClient(GatewayConfig(api_token=None))
    assert not client.is_configured
    with pytest.raises(ConfigurationError):
        await client.get_account_state("acc-1")


def test_region_is_composed_into_client_url(client):
    assert client.client_base_url("london") == "https://mt-client-api-v1.london.agiliumtrade.ai"
    assert client.client_base_url(None) == "https://mt-client-api-v1.new-york.agiliumtrade.ai"


@pytest.mark.asyncio
async def test_history_deals_url_contains_window(client):
    session_cm, session = _mock_session(200, "[]")
    start = datetime(2024, 4, 2, 12, 0, tzinfo=timezone.utc)
    end = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)
    with patch("tradesync.gateway.client.aiohttp.TCPConnector"), patch(
        "tradesync.gateway.client.aiohttp.ClientSession", return_value=session_cm
    ):
        result = await client.get_history_deals("acc-1", "london", start, end)
    assert result == []
    url = session.request.call_args.args[1]
    assert url.startswith("https://mt-client-api-v1.london.agiliumtrade.ai/")
    assert url.endswith("/history-deals/time/2024-04-02T12:00:00.000Z/2024-05-02T12:00:00.000Z")


def test_format_time_is_utc_millis():
    dt = datetime(2024, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
    assert _format_time(dt) == "2024-01-02T03:04:05.678Z"
