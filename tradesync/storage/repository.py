"""
Persistence functions for connections, the trade ledger and equity snapshots.

Provides repository pattern for clean data access. Each public function opens
its own session, so every call is one atomic group.
"""
from sqlalchemy import Column, String, Numeric, DateTime, Integer, Boolean, Index, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from tradesync.domain.models import Direction, EquitySnapshot, Platform, RemoteConnection, Trade
from tradesync.monitoring.logger import get_logger
from tradesync.storage.db import Base, get_db

logger = get_logger(__name__)


# ORM Models
class BrokerConnectionModel(Base):
    """ORM model for remote account bindings. Rows are deactivated, never deleted."""
    __tablename__ = "broker_connections"
    __table_args__ = (
        # At most one active connection per user, enforced by the database
        Index(
            'uq_connection_one_active',
            'user_id',
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
        Index('idx_connection_user', 'user_id', 'created_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    platform = Column(String, nullable=False)
    account_number = Column(String, nullable=False)
    server = Column(String, nullable=False)
    remote_account_id = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)


class TradeModel(Base):
    """ORM model for the trade ledger (open and closed rows)."""
    __tablename__ = "trades"
    __table_args__ = (
        # Sole deduplication key for broker-sourced rows; NULLs (manual trades) never collide
        UniqueConstraint('user_id', 'external_id', name='uq_trade_user_external'),
        Index('idx_trade_user_closed', 'user_id', 'closed_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    symbol = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    volume = Column(Numeric(precision=20, scale=8, asdecimal=False), nullable=False)
    entry_price = Column(Numeric(precision=20, scale=8, asdecimal=False), nullable=True)
    exit_price = Column(Numeric(precision=20, scale=8, asdecimal=False), nullable=True)
    profit = Column(Numeric(precision=20, scale=2, asdecimal=False), nullable=False, default=0)
    opened_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    external_id = Column(String, nullable=True)


class EquitySnapshotModel(Base):
    """ORM model for the append-only equity series."""
    __tablename__ = "equity_snapshots"
    __table_args__ = (
        Index('idx_equity_user_time', 'user_id', 'recorded_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    equity = Column(Numeric(precision=20, scale=2, asdecimal=False), nullable=False)
    balance = Column(Numeric(precision=20, scale=2, asdecimal=False), nullable=True)
    recorded_at = Column(DateTime, nullable=False)


# Conversion helpers
def _to_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    """Store UTC as naive datetimes (portable across dialects)."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _from_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    return dt.replace(tzinfo=timezone.utc) if dt is not None else None


def _to_connection(cm: BrokerConnectionModel) -> RemoteConnection:
    return RemoteConnection(
        id=cm.id,
        user_id=cm.user_id,
        platform=Platform(cm.platform),
        account_number=cm.account_number,
        server=cm.server,
        remote_account_id=cm.remote_account_id,
        active=bool(cm.active),
        created_at=_from_db_time(cm.created_at),
    )


def _to_trade(tm: TradeModel) -> Trade:
    return Trade(
        id=tm.id,
        user_id=tm.user_id,
        symbol=tm.symbol,
        direction=Direction(tm.direction),
        volume=float(tm.volume),
        entry_price=float(tm.entry_price) if tm.entry_price is not None else None,
        exit_price=float(tm.exit_price) if tm.exit_price is not None else None,
        profit=float(tm.profit or 0),
        opened_at=_from_db_time(tm.opened_at),
        closed_at=_from_db_time(tm.closed_at),
        external_id=tm.external_id,
    )


def _trade_values(trade: Trade) -> dict:
    return {
        "user_id": trade.user_id,
        "symbol": trade.symbol,
        "direction": trade.direction.value,
        "volume": trade.volume,
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "profit": trade.profit,
        "opened_at": _to_db_time(trade.opened_at),
        "closed_at": _to_db_time(trade.closed_at),
        "external_id": trade.external_id,
    }


# ==================== CONNECTIONS ====================

def _purge_ledger(session, user_id: int) -> Tuple[int, int]:
    trades_deleted = session.query(TradeModel).filter(
        TradeModel.user_id == user_id
    ).delete(synchronize_session=False)
    snapshots_deleted = session.query(EquitySnapshotModel).filter(
        EquitySnapshotModel.user_id == user_id
    ).delete(synchronize_session=False)
    return trades_deleted, snapshots_deleted


def replace_active_connection(connection: RemoteConnection) -> RemoteConnection:
    """
    Make ``connection`` the user's only active connection.

    Deactivates any previous active row and purges the user's trades and
    equity snapshots in the same transaction.
    """
    db = get_db()
    with db.get_session() as session:
        deactivated = session.query(BrokerConnectionModel).filter(
            BrokerConnectionModel.user_id == connection.user_id,
            BrokerConnectionModel.active == True,  # noqa: E712
        ).update({"active": False}, synchronize_session=False)
        # Flush the deactivation before the insert so the partial unique index holds
        session.flush()

        trades_deleted, snapshots_deleted = _purge_ledger(session, connection.user_id)

        cm = BrokerConnectionModel(
            user_id=connection.user_id,
            platform=connection.platform.value,
            account_number=connection.account_number,
            server=connection.server,
            remote_account_id=connection.remote_account_id,
            active=True,
            created_at=_to_db_time(connection.created_at),
        )
        session.add(cm)
        session.flush()

        logger.info(
            "CONNECTION_ACTIVATED",
            user_id=connection.user_id,
            connection_id=cm.id,
            deactivated=deactivated,
            trades_deleted=trades_deleted,
            snapshots_deleted=snapshots_deleted,
        )
        return _to_connection(cm)


def deactivate_active_connection(user_id: int) -> Optional[RemoteConnection]:
    """Deactivate the user's active connection and purge the ledger. Returns the old row."""
    db = get_db()
    with db.get_session() as session:
        cm = session.query(BrokerConnectionModel).filter(
            BrokerConnectionModel.user_id == user_id,
            BrokerConnectionModel.active == True,  # noqa: E712
        ).first()
        if cm is not None:
            cm.active = False
        trades_deleted, snapshots_deleted = _purge_ledger(session, user_id)
        session.flush()

        logger.info(
            "CONNECTION_DEACTIVATED",
            user_id=user_id,
            connection_id=cm.id if cm else None,
            trades_deleted=trades_deleted,
            snapshots_deleted=snapshots_deleted,
        )
        return _to_connection(cm) if cm else None


def get_active_connection(user_id: int) -> Optional[RemoteConnection]:
    """Get the user's active connection, if any."""
    db = get_db()
    with db.get_session() as session:
        cm = session.query(BrokerConnectionModel).filter(
            BrokerConnectionModel.user_id == user_id,
            BrokerConnectionModel.active == True,  # noqa: E712
        ).first()
        return _to_connection(cm) if cm else None


def get_connections(user_id: int) -> List[RemoteConnection]:
    """All connection rows for a user, newest first."""
    db = get_db()
    with db.get_session() as session:
        rows = session.query(BrokerConnectionModel).filter(
            BrokerConnectionModel.user_id == user_id
        ).order_by(BrokerConnectionModel.created_at.desc(), BrokerConnectionModel.id.desc()).all()
        return [_to_connection(cm) for cm in rows]


def purge_user_ledger(user_id: int) -> Tuple[int, int]:
    """Delete every trade and equity snapshot of a user. Returns (trades, snapshots)."""
    db = get_db()
    with db.get_session() as session:
        return _purge_ledger(session, user_id)


# ==================== TRADES ====================

def replace_open_broker_trades(user_id: int, trades: List[Trade]) -> int:
    """
    Wipe the user's open broker-sourced rows and insert ``trades``.

    The remote open-position list is a complete snapshot, so anything not in
    it is no longer open. Runs as one transaction; each insert has its own
    savepoint so a bad row is skipped without losing the rest.

    Returns:
        Number of rows inserted
    """
    db = get_db()
    inserted = 0
    with db.get_session() as session:
        removed = session.query(TradeModel).filter(
            TradeModel.user_id == user_id,
            TradeModel.closed_at.is_(None),
            TradeModel.external_id.isnot(None),
        ).delete(synchronize_session=False)

        for trade in trades:
            try:
                with session.begin_nested():
                    session.add(TradeModel(**_trade_values(trade)))
                inserted += 1
            except (SQLAlchemyError, ValueError, TypeError) as e:
                logger.warning(
                    "RECONCILE_POSITION_ROW_FAILED",
                    user_id=user_id,
                    external_id=trade.external_id,
                    symbol=trade.symbol,
                    error=str(e),
                )

    logger.debug("OPEN_POSITIONS_REPLACED", user_id=user_id, removed=removed, inserted=inserted)
    return inserted


def upsert_closed_trades(user_id: int, trades: List[Trade]) -> int:
    """
    Insert-or-update closed trades keyed on (user_id, external_id).

    Existing rows only have profit and exit price refreshed; the close time
    recorded on first insert is kept, so a deal without a gateway timestamp
    does not move on later syncs.
    PostgreSQL uses ON CONFLICT DO UPDATE; other dialects query then update.

    Returns:
        Number of rows written (inserted or updated)
    """
    db = get_db()
    written = 0
    with db.get_session() as session:
        for trade in trades:
            values = _trade_values(trade)
            try:
                with session.begin_nested():
                    if db.is_postgres:
                        stmt = pg_insert(TradeModel).values(values)
                        stmt = stmt.on_conflict_do_update(
                            constraint='uq_trade_user_external',
                            set_={
                                "profit": stmt.excluded.profit,
                                "exit_price": stmt.excluded.exit_price,
                                "closed_at": func.coalesce(TradeModel.__table__.c.closed_at, stmt.excluded.closed_at),
                            },
                        )
                        session.execute(stmt)
                    else:
                        existing = session.query(TradeModel).filter(
                            TradeModel.user_id == user_id,
                            TradeModel.external_id == trade.external_id,
                        ).first()
                        if existing:
                            existing.profit = values["profit"]
                            existing.exit_price = values["exit_price"]
                            if existing.closed_at is None:
                                existing.closed_at = values["closed_at"]
                        else:
                            session.add(TradeModel(**values))
                        session.flush()
                written += 1
            except (SQLAlchemyError, ValueError, TypeError) as e:
                logger.warning(
                    "RECONCILE_DEAL_ROW_FAILED",
                    user_id=user_id,
                    external_id=trade.external_id,
                    symbol=trade.symbol,
                    error=str(e),
                )
    return written


def save_trade(trade: Trade) -> Trade:
    """Insert a single trade (manual entry) and return it with its id."""
    db = get_db()
    with db.get_session() as session:
        tm = TradeModel(**_trade_values(trade))
        session.add(tm)
        session.flush()
        return _to_trade(tm)


def delete_trade(user_id: int, trade_id: int) -> bool:
    """Delete one of the user's trades. Returns False when it does not exist."""
    db = get_db()
    with db.get_session() as session:
        deleted = session.query(TradeModel).filter(
            TradeModel.id == trade_id,
            TradeModel.user_id == user_id,
        ).delete(synchronize_session=False)
        return deleted > 0


def get_trades(user_id: int, limit: int, offset: int) -> Tuple[List[Trade], int]:
    """
    Page through a user's ledger: open trades first, then newest close.

    Returns:
        (trades, total row count)
    """
    db = get_db()
    with db.get_session() as session:
        query = session.query(TradeModel).filter(TradeModel.user_id == user_id)
        total = query.count()
        rows = query.order_by(
            TradeModel.closed_at.desc().nulls_first(),
            TradeModel.id.desc(),
        ).offset(offset).limit(limit).all()
        return [_to_trade(tm) for tm in rows], total


def get_all_trades(user_id: int) -> List[Trade]:
    """Retrieve every ledger row of a user."""
    db = get_db()
    with db.get_session() as session:
        rows = session.query(TradeModel).filter(TradeModel.user_id == user_id).all()
        return [_to_trade(tm) for tm in rows]


# ==================== EQUITY ====================

def save_equity_snapshot(user_id: int, equity: float, balance: Optional[float] = None) -> EquitySnapshot:
    """Append one equity observation."""
    db = get_db()
    with db.get_session() as session:
        sm = EquitySnapshotModel(
            user_id=user_id,
            equity=equity,
            balance=balance,
            recorded_at=_to_db_time(datetime.now(timezone.utc)),
        )
        session.add(sm)
        session.flush()
        return EquitySnapshot(
            id=sm.id,
            user_id=user_id,
            equity=float(sm.equity),
            balance=float(sm.balance) if sm.balance is not None else None,
            recorded_at=_from_db_time(sm.recorded_at),
        )


def get_equity_history(user_id: int, since: datetime) -> List[EquitySnapshot]:
    """Snapshots recorded after ``since``, oldest first."""
    db = get_db()
    with db.get_session() as session:
        rows = session.query(EquitySnapshotModel).filter(
            EquitySnapshotModel.user_id == user_id,
            EquitySnapshotModel.recorded_at > _to_db_time(since),
        ).order_by(EquitySnapshotModel.recorded_at.asc(), EquitySnapshotModel.id.asc()).all()
        return [
            EquitySnapshot(
                id=sm.id,
                user_id=sm.user_id,
                equity=float(sm.equity),
                balance=float(sm.balance) if sm.balance is not None else None,
                recorded_at=_from_db_time(sm.recorded_at),
            )
            for sm in rows
        ]


def get_latest_equity(user_id: int) -> Optional[float]:
    """Most recent equity value, or None without snapshots."""
    db = get_db()
    with db.get_session() as session:
        sm = session.query(EquitySnapshotModel).filter(
            EquitySnapshotModel.user_id == user_id
        ).order_by(EquitySnapshotModel.recorded_at.desc(), EquitySnapshotModel.id.desc()).first()
        return float(sm.equity) if sm else None
