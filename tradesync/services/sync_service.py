"""
Broker synchronization service.

Facade over provisioning, polling, fetching, reconciliation, equity and
statistics. This is the surface the HTTP and CLI layers call; it trusts the
``user_id`` it is handed.

``sync`` never raises for gateway or storage trouble: every failure path
becomes a typed ``SyncResult``.
"""
import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from tradesync.broker.fetcher import PositionDealFetcher
from tradesync.broker.provisioning import AccountProvisioner, parse_platform
from tradesync.broker.registry import ConnectionRegistry
from tradesync.broker.state_poller import StatePoller
from tradesync.config.config import Config, get_config
from tradesync.constants import PIP_MULTIPLIER, PIP_VALUE, TRADES_PAGE_DEFAULT_LIMIT
from tradesync.domain.models import (
    Direction,
    EquitySnapshot,
    ReadinessOutcome,
    RemoteConnection,
    StatisticsSnapshot,
    SyncResult,
    SyncStatus,
    Trade,
)
from tradesync.exceptions import (
    ConfigurationError,
    GatewayPermanentError,
    OperationalError,
    ValidationError,
)
from tradesync.gateway.client import GatewayClient
from tradesync.monitoring.logger import get_logger, log_context
from tradesync.reconciliation.engine import ReconciliationEngine
from tradesync.reconciliation.equity import EquityRecorder
from tradesync.reconciliation.statistics import get_stats
from tradesync.storage import repository

logger = get_logger(__name__)

MAX_PAGE_SIZE = 500

MESSAGES = {
    SyncStatus.NO_CONNECTION: "No broker account connected.",
    SyncStatus.NOT_CONFIGURED: "Broker synchronization is not configured on this server.",
    SyncStatus.DEPLOYING: "Your account is being deployed. Try again in a minute.",
    SyncStatus.CONNECTING: "Your account is connecting to the broker. Try again shortly.",
    SyncStatus.GATEWAY_UNAVAILABLE: "The broker gateway is temporarily unavailable. Try again shortly.",
    SyncStatus.GATEWAY_REJECTED: (
        "The broker rejected the connection. Check your investor password and "
        "server name, then reconnect the account."
    ),
    SyncStatus.STORAGE_UNAVAILABLE: "Could not save synchronized data. Try again shortly.",
}

PARTIAL_SYNC_MESSAGE = "Synchronization complete, but some data could not be saved. Try again shortly."


def _finite(value: Any, name: str, required: bool = True, positive: bool = False) -> Optional[float]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be numeric")
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be a finite number")
    if positive and number <= 0:
        raise ValidationError(f"{name} must be positive")
    return number


def manual_trade_profit(direction: Direction, volume: float, entry_price: float, exit_price: Optional[float]) -> float:
    """Simplified pip model for hand-entered trades; 0 until an exit price is known."""
    if exit_price is None:
        return 0.0
    sign = 1 if direction == Direction.BUY else -1
    pips = (exit_price - entry_price) * PIP_MULTIPLIER
    return round(pips * volume * PIP_VALUE * sign, 2)


class SyncService:
    """Operations exposed to the HTTP surface and the CLI."""

    def __init__(self, config: Optional[Config] = None, client: Optional[GatewayClient] = None):
        self.config = config or get_config()
        self.client = client or GatewayClient(self.config.gateway)
        self.provisioner = AccountProvisioner(self.client)
        self.poller = StatePoller(self.client)
        self.fetcher = PositionDealFetcher(self.client, self.config.sync.deals_window_days)
        self.registry = ConnectionRegistry()
        self.engine = ReconciliationEngine()
        self.equity = EquityRecorder()

    # ==================== CONNECTION ====================

    async def connect(
        self,
        user_id: int,
        platform: str,
        account_number: str,
        investor_password: str,
        server: str,
    ) -> RemoteConnection:
        """
        Provision a remote account and make it the user's active connection.

        Raises:
            ValidationError, ConfigurationError, ProvisionError
        """
        parsed_platform = parse_platform(platform)
        remote_account_id = await self.provisioner.provision(
            parsed_platform.value, account_number, investor_password, server
        )
        connection = await asyncio.to_thread(self.registry.activate, RemoteConnection(
            user_id=user_id,
            platform=parsed_platform,
            account_number=account_number.strip(),
            server=server.strip(),
            remote_account_id=remote_account_id,
        ))
        logger.info("BROKER_CONNECTED", user_id=user_id, connection_id=connection.id, remote_account_id=remote_account_id)

        if self.config.sync.sync_on_connect:
            result = await self.sync(user_id)
            logger.info("CONNECT_INITIAL_SYNC", user_id=user_id, status=result.status.value)
        return connection

    def list_connections(self, user_id: int) -> List[RemoteConnection]:
        return self.registry.list(user_id)

    def disconnect(self, user_id: int) -> None:
        previous = self.registry.disconnect(user_id)
        logger.info("BROKER_DISCONNECTED", user_id=user_id, had_connection=previous is not None)

    def reset_data(self, user_id: int) -> Dict[str, int]:
        return self.registry.reset_data(user_id)

    # ==================== SYNC ====================

    def _result(self, status: SyncStatus, message: str = "") -> SyncResult:
        return SyncResult(status=status, message=message or MESSAGES[status])

    async def sync(self, user_id: int) -> SyncResult:
        """Poll, fetch and reconcile the user's active remote account."""
        with log_context(user_id=user_id):
            return await self._sync(user_id)

    async def _sync(self, user_id: int) -> SyncResult:
        try:
            connection = await asyncio.to_thread(self.registry.active, user_id)
        except SQLAlchemyError as e:
            logger.error("SYNC_STORAGE_FAILED", user_id=user_id, error=str(e))
            return self._result(SyncStatus.STORAGE_UNAVAILABLE)

        if connection is None:
            return self._result(SyncStatus.NO_CONNECTION)
        if not self.client.is_configured:
            logger.warning("SYNC_NOT_CONFIGURED", user_id=user_id)
            return self._result(SyncStatus.NOT_CONFIGURED)

        account_id = connection.remote_account_id
        logger.info("SYNC_START", user_id=user_id, account_id=account_id)

        try:
            poll = await self.poller.poll(account_id)
            if poll.outcome == ReadinessOutcome.DEPLOYING:
                return self._result(SyncStatus.DEPLOYING)
            if poll.outcome == ReadinessOutcome.CONNECTING:
                return self._result(SyncStatus.CONNECTING)

            fetched = await self.fetcher.fetch(account_id, poll.state.region)
            if not fetched.any_ok:
                return self._result(SyncStatus.GATEWAY_UNAVAILABLE)

            summary = await asyncio.to_thread(self.engine.reconcile, user_id, fetched)
        except OperationalError as e:
            logger.warning("SYNC_GATEWAY_UNAVAILABLE", user_id=user_id, error=str(e))
            return self._result(SyncStatus.GATEWAY_UNAVAILABLE)
        except GatewayPermanentError as e:
            logger.warning("SYNC_GATEWAY_REJECTED", user_id=user_id, status=e.status, error=str(e))
            return self._result(SyncStatus.GATEWAY_REJECTED)
        except ConfigurationError as e:
            logger.warning("SYNC_NOT_CONFIGURED", user_id=user_id, error=str(e))
            return self._result(SyncStatus.NOT_CONFIGURED)
        except SQLAlchemyError as e:
            logger.error("SYNC_STORAGE_FAILED", user_id=user_id, error=str(e))
            return self._result(SyncStatus.STORAGE_UNAVAILABLE)

        failed = list(summary["failed_groups"])
        if summary["attempted_groups"] and len(failed) == len(summary["attempted_groups"]):
            logger.error("SYNC_STORAGE_FAILED", user_id=user_id, failed_groups=failed)
            result = self._result(SyncStatus.STORAGE_UNAVAILABLE)
            result.failed_groups = failed
            return result

        result = SyncResult(
            status=SyncStatus.SYNCED,
            message=PARTIAL_SYNC_MESSAGE if failed else "Synchronization complete.",
            trades_synced=summary["trades_synced"],
            failed_groups=failed,
        )
        if fetched.account_information.ok:
            info = fetched.account_information.value
            result.equity = info.equity
            result.balance = info.balance
            result.floating_profit = info.floating_profit
            try:
                await asyncio.to_thread(self.equity.record_account, user_id, info)
            except SQLAlchemyError as e:
                # Ledger rows already committed stay reported
                logger.error("SYNC_EQUITY_RECORD_FAILED", user_id=user_id, error=str(e))
                result.failed_groups.append("equity")
                result.message = PARTIAL_SYNC_MESSAGE

        logger.info(
            "SYNC_SUMMARY",
            user_id=user_id,
            trades_synced=result.trades_synced,
            equity=result.equity,
            balance=result.balance,
            failed_groups=result.failed_groups,
        )
        return result

    # ==================== TRADES ====================

    def list_trades(self, user_id: int, limit: int = TRADES_PAGE_DEFAULT_LIMIT, offset: int = 0) -> Dict[str, Any]:
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        trades, total = repository.get_trades(user_id, limit, offset)
        return {"trades": trades, "total": total, "limit": limit, "offset": offset}

    def delete_trade(self, user_id: int, trade_id: int) -> bool:
        deleted = repository.delete_trade(user_id, trade_id)
        logger.info("TRADE_DELETED", user_id=user_id, trade_id=trade_id, deleted=deleted)
        return deleted

    def add_manual_trade(
        self,
        user_id: int,
        symbol: str,
        direction: str,
        volume: Any,
        entry_price: Any,
        exit_price: Any = None,
        opened_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None,
    ) -> Trade:
        """
        Store a hand-entered trade (external id stays null).

        Raises:
            ValidationError: Missing or malformed fields
        """
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise ValidationError("symbol is required")
        try:
            parsed_direction = Direction((direction or "").strip().lower())
        except ValueError:
            raise ValidationError("direction must be 'buy' or 'sell'")
        parsed_volume = _finite(volume, "volume", positive=True)
        parsed_entry = _finite(entry_price, "entry_price", positive=True)
        parsed_exit = _finite(exit_price, "exit_price", required=False, positive=True)

        trade = repository.save_trade(Trade(
            user_id=user_id,
            symbol=symbol,
            direction=parsed_direction,
            volume=parsed_volume,
            entry_price=parsed_entry,
            exit_price=parsed_exit,
            profit=manual_trade_profit(parsed_direction, parsed_volume, parsed_entry, parsed_exit),
            opened_at=opened_at or datetime.now(timezone.utc),
            closed_at=closed_at,
        ))
        logger.info("TRADE_ADDED", user_id=user_id, trade_id=trade.id, symbol=symbol, profit=trade.profit)
        return trade

    # ==================== READ SIDE ====================

    def get_stats(self, user_id: int) -> StatisticsSnapshot:
        return get_stats(user_id)

    def get_equity_history(self, user_id: int, days: Optional[int] = None) -> List[EquitySnapshot]:
        if days is None:
            return self.equity.history(user_id)
        return self.equity.history(user_id, days)

    def add_equity_snapshot(self, user_id: int, equity: Any) -> EquitySnapshot:
        return self.equity.record_manual(user_id, equity)
