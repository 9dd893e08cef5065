"""
Domain models for the broker synchronization service.

These are the core business objects used throughout the application.
All timestamps use UTC timezone-aware datetimes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class Platform(str, Enum):
    """Trading terminal platform."""
    MT4 = "mt4"
    MT5 = "mt5"


class Direction(str, Enum):
    """Trade direction."""
    BUY = "buy"
    SELL = "sell"


class ReadinessOutcome(str, Enum):
    """Result of deriving remote account readiness from gateway state."""
    READY = "ready"
    DEPLOYING = "deploying"
    CONNECTING = "connecting"


class SyncStatus(str, Enum):
    """Outcome category of one synchronization run."""
    SYNCED = "synced"
    NO_CONNECTION = "no_connection"
    NOT_CONFIGURED = "not_configured"
    DEPLOYING = "deploying"
    CONNECTING = "connecting"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    GATEWAY_REJECTED = "gateway_rejected"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def retryable(self) -> bool:
        return self in (
            SyncStatus.DEPLOYING,
            SyncStatus.CONNECTING,
            SyncStatus.GATEWAY_UNAVAILABLE,
            SyncStatus.STORAGE_UNAVAILABLE,
        )


@dataclass(frozen=True)
class Decoded(Generic[T]):
    """
    Boundary decode result: either a parsed value or a malformed marker.

    Untyped gateway payloads never travel past the fetcher; callers branch
    on ``ok`` instead.
    """
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Decoded[T]":
        return cls(value=value)

    @classmethod
    def malformed(cls, error: str) -> "Decoded[T]":
        return cls(error=error or "malformed payload")


@dataclass
class RemoteConnection:
    """A user's binding to a provisioned remote account."""
    user_id: int
    platform: Platform
    account_number: str
    server: str
    remote_account_id: str
    active: bool = True
    id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "account_number": self.account_number,
            "server": self.server,
            "remote_account_id": self.remote_account_id,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Trade:
    """
    A ledger row: open (closed_at is None) or closed.

    external_id is None for manual trades and unique per user otherwise.
    """
    user_id: int
    symbol: str
    direction: Direction
    volume: float
    entry_price: Optional[float]
    profit: float
    opened_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    external_id: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "volume": self.volume,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "profit": self.profit,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "external_id": self.external_id,
        }


@dataclass(frozen=True)
class EquitySnapshot:
    """Append-only equity observation."""
    user_id: int
    equity: float
    recorded_at: datetime
    balance: Optional[float] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "equity": self.equity,
            "balance": self.balance,
            "recorded_at": self.recorded_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Gateway-side objects (decoded at the boundary)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AccountState:
    """Lifecycle/connectivity snapshot of a remote account."""
    account_id: str
    lifecycle: str
    connectivity: str
    region: Optional[str] = None


@dataclass(frozen=True)
class AccountInformation:
    """Balance/equity figures reported by the live account."""
    equity: float
    balance: Optional[float] = None

    @property
    def floating_profit(self) -> Optional[float]:
        if self.balance is None:
            return None
        return self.equity - self.balance


@dataclass(frozen=True)
class RemotePosition:
    """Currently open exposure on the remote account."""
    symbol: str
    direction: Direction
    volume: float
    open_price: Optional[float]
    profit: float
    position_id: Optional[str] = None
    opened_at: Optional[datetime] = None


@dataclass(frozen=True)
class RemoteDeal:
    """A closing deal that passed the trade filter."""
    deal_id: Optional[str]
    symbol: str
    direction: Direction
    volume: float
    price: Optional[float]
    profit: float
    time: Optional[datetime] = None


@dataclass(frozen=True)
class PollResult:
    """What the state poller learned on one sync attempt."""
    outcome: ReadinessOutcome
    state: AccountState

    @property
    def ready(self) -> bool:
        return self.outcome == ReadinessOutcome.READY


@dataclass(frozen=True)
class FetchedAccount:
    """Everything pulled from the region-scoped endpoints in one sync."""
    account_information: Decoded[AccountInformation]
    positions: Decoded[List[RemotePosition]]
    deals: Decoded[List[RemoteDeal]]

    @property
    def any_ok(self) -> bool:
        return self.account_information.ok or self.positions.ok or self.deals.ok


@dataclass
class SyncResult:
    """Transient outcome of one reconciliation run."""
    status: SyncStatus
    message: str = ""
    trades_synced: int = 0
    equity: Optional[float] = None
    balance: Optional[float] = None
    floating_profit: Optional[float] = None
    failed_groups: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SYNCED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "retryable": self.status.retryable,
            "message": self.message,
            "trades_synced": self.trades_synced,
            "equity": self.equity,
            "balance": self.balance,
            "floating_profit": self.floating_profit,
            "failed_groups": list(self.failed_groups),
        }


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Read-side statistics over the ledger."""
    equity: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    profit_factor: float
    total_profit: float
    avg_profit: float
    best_trade: float
    worst_trade: float
    today_profit: float
    open_trades: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "equity": self.equity,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "total_profit": self.total_profit,
            "avg_profit": self.avg_profit,
            "best_trade": self.best_trade,
            "worst_trade": self.worst_trade,
            "today_profit": self.today_profit,
            "open_trades": self.open_trades,
        }
