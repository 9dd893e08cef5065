"""
Statistics over the trade ledger.

Recomputed on every request. Every ratio substitutes zero for an empty
denominator so callers never see NaN or infinity.
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from tradesync.domain.models import StatisticsSnapshot, Trade
from tradesync.storage.repository import get_all_trades, get_latest_equity


def _safe_div(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def compute_statistics(
    trades: Iterable[Trade],
    latest_equity: Optional[float],
    now: Optional[datetime] = None,
) -> StatisticsSnapshot:
    """
    Aggregate a user's ledger.

    Counts, win rate and best/worst/average profit cover closed trades only.
    Profit factor weighs every row, open positions included. Today's profit
    covers trades closed on the current UTC day.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    trades = list(trades)
    closed = [t for t in trades if not t.is_open]
    profits = [t.profit for t in closed]

    winning = sum(1 for p in profits if p > 0)
    losing = sum(1 for p in profits if p < 0)
    gross_profit = sum(t.profit for t in trades if t.profit > 0)
    gross_loss = sum(abs(t.profit) for t in trades if t.profit < 0)
    total_profit = sum(profits)

    today = now.date()
    today_profit = sum(
        t.profit for t in closed
        if t.closed_at is not None and t.closed_at.astimezone(timezone.utc).date() == today
    )

    return StatisticsSnapshot(
        equity=latest_equity or 0.0,
        total_trades=len(closed),
        winning_trades=winning,
        losing_trades=losing,
        win_rate=round(_safe_div(winning, len(closed)) * 100, 1),
        profit_factor=round(_safe_div(gross_profit, gross_loss), 2),
        total_profit=round(total_profit, 2),
        avg_profit=round(_safe_div(total_profit, len(closed)), 2),
        best_trade=max(profits) if profits else 0.0,
        worst_trade=min(profits) if profits else 0.0,
        today_profit=round(today_profit, 2),
        open_trades=sum(1 for t in trades if t.is_open),
    )


def get_stats(user_id: int, now: Optional[datetime] = None) -> StatisticsSnapshot:
    return compute_statistics(get_all_trades(user_id), get_latest_equity(user_id), now)
