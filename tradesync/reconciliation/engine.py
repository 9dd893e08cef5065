"""
Reconciliation engine for the trade ledger.

Merges the remote account's feeds into local trade rows:
- Open positions: the remote list is a full snapshot. Open broker-sourced rows
  are wiped and re-inserted in one transaction.
- Closed deals: upserted on (user_id, external_id); repeat deals only refresh
  profit and exit price; the first recorded close time is kept.

Gateway profit figures are stored as reported and never recomputed.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from tradesync.constants import DEAL_EXTERNAL_ID_PREFIX, POSITION_EXTERNAL_ID_PREFIX
from tradesync.domain.models import FetchedAccount, RemoteDeal, RemotePosition, Trade
from tradesync.exceptions import PersistenceError
from tradesync.monitoring.logger import get_logger
from tradesync.storage.repository import replace_open_broker_trades, upsert_closed_trades

logger = get_logger(__name__)


def position_external_id(position: RemotePosition, now: datetime) -> str:
    """
    Deterministic key for an open position.

    Without a gateway position id the key falls back to symbol plus open time
    (or sync time when that is missing too), which is not stable across syncs.
    """
    if position.position_id:
        return f"{POSITION_EXTERNAL_ID_PREFIX}_{position.position_id}"
    stamp = position.opened_at or now
    return f"{POSITION_EXTERNAL_ID_PREFIX}_{position.symbol}_{int(stamp.timestamp())}"


def deal_external_id(deal: RemoteDeal) -> Optional[str]:
    """Key for a closing deal; None when the gateway gave no deal id."""
    if not deal.deal_id:
        return None
    return f"{DEAL_EXTERNAL_ID_PREFIX}_{deal.deal_id}"


def position_to_trade(user_id: int, position: RemotePosition, now: datetime) -> Trade:
    return Trade(
        user_id=user_id,
        symbol=position.symbol,
        direction=position.direction,
        volume=position.volume,
        entry_price=position.open_price,
        profit=position.profit,
        opened_at=position.opened_at or now,
        external_id=position_external_id(position, now),
    )


def deal_to_trade(user_id: int, deal: RemoteDeal, now: datetime) -> Optional[Trade]:
    external_id = deal_external_id(deal)
    if external_id is None:
        return None
    return Trade(
        user_id=user_id,
        symbol=deal.symbol,
        direction=deal.direction,
        volume=deal.volume,
        entry_price=None,
        exit_price=deal.price,
        profit=deal.profit,
        closed_at=deal.time or now,
        external_id=external_id,
    )


class ReconciliationEngine:
    """
    Applies fetched remote state to a user's ledger.

    Each half is its own atomic group; a feed that failed to decode leaves
    the corresponding half of the ledger untouched.
    """

    def reconcile_open_positions(
        self,
        user_id: int,
        positions: List[RemotePosition],
        now: Optional[datetime] = None,
    ) -> int:
        now = now or datetime.now(timezone.utc)
        trades = [position_to_trade(user_id, p, now) for p in positions]
        try:
            inserted = replace_open_broker_trades(user_id, trades)
        except SQLAlchemyError as e:
            logger.error("RECONCILE_POSITIONS_FAILED", user_id=user_id, error=str(e))
            raise PersistenceError(f"Open-position replacement rolled back: {e}") from e
        logger.info("RECONCILE_POSITIONS", user_id=user_id, reported=len(positions), inserted=inserted)
        return inserted

    def reconcile_closed_deals(
        self,
        user_id: int,
        deals: List[RemoteDeal],
        now: Optional[datetime] = None,
    ) -> int:
        now = now or datetime.now(timezone.utc)
        trades: List[Trade] = []
        for deal in deals:
            trade = deal_to_trade(user_id, deal, now)
            if trade is None:
                logger.warning("RECONCILE_DEAL_SKIPPED", user_id=user_id, symbol=deal.symbol, reason="missing deal id")
                continue
            trades.append(trade)

        # Same deal twice in one payload collapses to one write
        unique: Dict[str, Trade] = {t.external_id: t for t in trades}
        try:
            written = upsert_closed_trades(user_id, list(unique.values()))
        except SQLAlchemyError as e:
            logger.error("RECONCILE_DEALS_FAILED", user_id=user_id, error=str(e))
            raise PersistenceError(f"Deal upsert rolled back: {e}") from e
        logger.info("RECONCILE_DEALS", user_id=user_id, reported=len(deals), written=written)
        return written

    def reconcile(self, user_id: int, fetched: FetchedAccount, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run both merges for whichever feeds decoded.

        The two halves commit independently: a half that rolls back is named in
        ``failed_groups`` and the other half still lands.

        Returns:
            Summary counts; ``trades_synced`` is the number of rows written.
        """
        now = now or datetime.now(timezone.utc)
        summary: Dict[str, Any] = {
            "positions_written": 0,
            "deals_written": 0,
            "trades_synced": 0,
            "attempted_groups": [],
            "failed_groups": [],
        }

        if fetched.positions.ok:
            summary["attempted_groups"].append("positions")
            try:
                summary["positions_written"] = self.reconcile_open_positions(user_id, fetched.positions.value, now)
            except PersistenceError:
                summary["failed_groups"].append("positions")
        else:
            logger.warning("RECONCILE_POSITIONS_SKIPPED", user_id=user_id, reason=fetched.positions.error)

        if fetched.deals.ok:
            summary["attempted_groups"].append("deals")
            try:
                summary["deals_written"] = self.reconcile_closed_deals(user_id, fetched.deals.value, now)
            except PersistenceError:
                summary["failed_groups"].append("deals")
        else:
            logger.warning("RECONCILE_DEALS_SKIPPED", user_id=user_id, reason=fetched.deals.error)

        summary["trades_synced"] = summary["positions_written"] + summary["deals_written"]
        logger.info("RECONCILE_SUMMARY", user_id=user_id, **summary)
        return summary
