"""
Async REST client for the brokerage gateway (MetaApi cloud).

Handles:
- Provisioning API calls (create account, deploy, account state)
- Region-scoped client API calls (account information, positions, deals)
- Mandatory per-call timeouts
- Mapping transport/HTTP failures onto the service's error taxonomy

Responses are returned as raw JSON values; decoding happens in
``tradesync.gateway.payloads``.
"""
import asyncio
import json
import ssl
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
import certifi

from tradesync.config.config import GatewayConfig
from tradesync.constants import (
    ACCOUNT_ENDPOINT,
    ACCOUNT_INFORMATION_ENDPOINT,
    ACCOUNTS_ENDPOINT,
    DEPLOY_ENDPOINT,
    HISTORY_DEALS_ENDPOINT,
    POSITIONS_ENDPOINT,
)
from tradesync.exceptions import (
    ConfigurationError,
    GatewayPermanentError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    MalformedPayloadError,
)
from tradesync.gateway.payloads import error_message
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)


def _format_time(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, as the gateway expects in paths."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class GatewayClient:
    """
    Thin async wrapper over the gateway's REST endpoints.

    One ``aiohttp.ClientSession`` per call keeps concurrent syncs for
    different users fully independent.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config
        self._ssl_context: Optional[ssl.SSLContext] = None

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def client_base_url(self, region: Optional[str]) -> str:
        return self.config.client_url_template.format(region=region or self.config.default_region)

    def _get_ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context(cafile=certifi.where())
        return self._ssl_context

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one gateway call and return the decoded JSON body.

        Raises:
            ConfigurationError: No gateway token configured
            GatewayTimeoutError: Call exceeded the configured timeout
            GatewayUnavailableError: Connection failure, 429 or 5xx
            GatewayPermanentError: Any other 4xx
            MalformedPayloadError: 2xx with a non-JSON body
        """
        if not self.config.api_token:
            raise ConfigurationError("Gateway token (METAAPI_TOKEN) is not configured")

        headers = {
            "auth-token": self.config.api_token,
            "Accept": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        connector = aiohttp.TCPConnector(ssl=self._get_ssl_context())

        try:
            async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
                async with session.request(method, url, headers=headers, json=payload) as response:
                    status = response.status
                    body = await response.text()
        except asyncio.TimeoutError as e:
            logger.warning("GATEWAY_TIMEOUT", method=method, url=url)
            raise GatewayTimeoutError(f"Gateway call timed out: {method} {url}") from e
        except aiohttp.ClientError as e:
            logger.warning("GATEWAY_CONNECTION_FAILED", method=method, url=url, error=str(e))
            raise GatewayUnavailableError(f"Gateway connection failed: {e}") from e

        return self._handle_response(method, url, status, body)

    def _handle_response(self, method: str, url: str, status: int, body: str) -> Any:
        parsed: Any = None
        parse_failed = False
        if body and body.strip():
            try:
                parsed = json.loads(body)
            except ValueError:
                parse_failed = True

        if status == 429 or status >= 500:
            logger.warning("GATEWAY_UNAVAILABLE", method=method, url=url, status=status)
            raise GatewayUnavailableError(
                error_message(parsed) or f"Gateway returned HTTP {status}"
            )
        if status >= 400:
            message = error_message(parsed) or f"Gateway rejected the request (HTTP {status})"
            logger.warning("GATEWAY_REJECTED", method=method, url=url, status=status, message=message)
            raise GatewayPermanentError(message, status=status)
        if parse_failed:
            logger.warning("GATEWAY_NON_JSON", method=method, url=url, status=status, body=body[:200])
            raise MalformedPayloadError(f"Gateway returned a non-JSON body for {method} {url}")
        return parsed

    # ------------------------------------------------------------------
    # Provisioning API
    # ------------------------------------------------------------------

    async def create_account(
        self,
        platform: str,
        login: str,
        investor_password: str,
        server: str,
        name: str,
    ) -> Any:
        """Create a cloud account shadow bound to the investor (read-only) credential."""
        url = self.config.provisioning_url + ACCOUNTS_ENDPOINT
        body = {
            "login": login,
            "password": investor_password,
            "name": name,
            "server": server,
            "platform": platform,
            "magic": self.config.magic,
            "type": "cloud",
            "application": "MetaApi",
        }
        return await self._request("POST", url, body)

    async def deploy_account(self, account_id: str) -> None:
        """Request deployment; completion is observed later through the account state."""
        url = self.config.provisioning_url + DEPLOY_ENDPOINT.format(account_id=account_id)
        await self._request("POST", url)

    async def get_account_state(self, account_id: str) -> Any:
        url = self.config.provisioning_url + ACCOUNT_ENDPOINT.format(account_id=account_id)
        return await self._request("GET", url)

    # ------------------------------------------------------------------
    # Region-scoped client API
    # ------------------------------------------------------------------

    async def get_account_information(self, account_id: str, region: Optional[str]) -> Any:
        url = self.client_base_url(region) + ACCOUNT_INFORMATION_ENDPOINT.format(account_id=account_id)
        return await self._request("GET", url)

    async def get_positions(self, account_id: str, region: Optional[str]) -> Any:
        url = self.client_base_url(region) + POSITIONS_ENDPOINT.format(account_id=account_id)
        return await self._request("GET", url)

    async def get_history_deals(
        self,
        account_id: str,
        region: Optional[str],
        start: datetime,
        end: datetime,
    ) -> Any:
        url = self.client_base_url(region) + HISTORY_DEALS_ENDPOINT.format(
            account_id=account_id,
            start=_format_time(start),
            end=_format_time(end),
        )
        return await self._request("GET", url)
