"""
Position & Deal Fetcher.

Pulls account information, open positions and the trailing window of deals
from the region-scoped client API. Each feed is guarded on its own: a
transport or decode failure marks that feed malformed without touching the
others.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from tradesync.constants import DEALS_WINDOW_DAYS
from tradesync.domain.models import Decoded, FetchedAccount
from tradesync.exceptions import OperationalError
from tradesync.gateway.client import GatewayClient
from tradesync.gateway.payloads import (
    decode_account_information,
    decode_deals,
    decode_positions,
)
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)


class PositionDealFetcher:
    """Fetches and decodes the three region-scoped feeds for one account."""

    def __init__(self, client: GatewayClient, deals_window_days: int = DEALS_WINDOW_DAYS):
        self.client = client
        self.deals_window_days = deals_window_days

    async def _guarded(
        self,
        feed: str,
        account_id: str,
        call: Callable[[], Awaitable[Any]],
        decoder: Callable[[Any], Decoded],
    ) -> Decoded:
        try:
            payload = await call()
        except OperationalError as e:
            logger.warning("FETCH_FEED_FAILED", feed=feed, account_id=account_id, error=str(e))
            return Decoded.malformed(str(e))

        decoded = decoder(payload)
        if not decoded.ok:
            logger.warning("FETCH_FEED_MALFORMED", feed=feed, account_id=account_id, error=decoded.error)
        return decoded

    async def fetch(
        self,
        account_id: str,
        region: Optional[str],
        now: Optional[datetime] = None,
    ) -> FetchedAccount:
        """
        Fetch all feeds for ``account_id`` in ``region``.

        GatewayPermanentError is not swallowed: a rejected account cannot be
        synced at all.
        """
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=self.deals_window_days)

        account_information = await self._guarded(
            "account_information",
            account_id,
            lambda: self.client.get_account_information(account_id, region),
            decode_account_information,
        )
        positions = await self._guarded(
            "positions",
            account_id,
            lambda: self.client.get_positions(account_id, region),
            decode_positions,
        )
        deals = await self._guarded(
            "deals",
            account_id,
            lambda: self.client.get_history_deals(account_id, region, start, end),
            decode_deals,
        )

        logger.info(
            "FETCH_COMPLETE",
            account_id=account_id,
            region=region,
            account_information_ok=account_information.ok,
            positions=len(positions.value) if positions.ok else None,
            deals=len(deals.value) if deals.ok else None,
        )
        return FetchedAccount(account_information=account_information, positions=positions, deals=deals)
