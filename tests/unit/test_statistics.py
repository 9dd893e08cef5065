"""
Statistics aggregation, including the zero-denominator guards.
"""
import math
from datetime import datetime, timedelta, timezone

from tradesync.domain.models import Direction, Trade
from tradesync.reconciliation.statistics import compute_statistics, get_stats
from tradesync.storage import repository

NOW = datetime(2024, 5, 2, 15, 0, tzinfo=timezone.utc)


def _closed(profit, closed_at=NOW - timedelta(days=3)):
    return Trade(user_id=1, symbol="EURUSD", direction=Direction.BUY, volume=1.0,
                 entry_price=1.1, profit=profit, closed_at=closed_at, external_id=None)


def _open(profit=5.0):
    return Trade(user_id=1, symbol="EURUSD", direction=Direction.BUY, volume=1.0,
                 entry_price=1.1, profit=profit)


def test_empty_ledger_is_all_zero():
    stats = compute_statistics([], None, NOW)
    assert stats.total_trades == 0
    assert stats.win_rate == 0
    assert stats.profit_factor == 0
    assert stats.avg_profit == 0
    assert stats.best_trade == 0
    assert stats.worst_trade == 0
    assert stats.equity == 0
    for value in stats.to_dict().values():
        assert math.isfinite(value)


def test_only_open_trades_zero_counts():
    stats = compute_statistics([_open(), _open(-3.0)], 1000.0, NOW)
    assert stats.total_trades == 0
    assert stats.open_trades == 2
    assert stats.win_rate == 0
    assert stats.profit_factor == 1.67
    assert stats.equity == 1000.0


def test_no_losses_gives_zero_profit_factor():
    stats = compute_statistics([_closed(10.0), _closed(5.0)], None, NOW)
    assert stats.win_rate == 100.0
    assert stats.profit_factor == 0


def test_mixed_ledger():
    trades = [
        _closed(100.0),
        _closed(50.0, closed_at=NOW - timedelta(hours=2)),
        _closed(-30.0),
        _closed(-20.0, closed_at=NOW - timedelta(hours=1)),
        _closed(0.0),
        _open(999.0),
    ]
    stats = compute_statistics(trades, 10500.0, NOW)

    assert stats.total_trades == 5
    assert stats.winning_trades == 2
    assert stats.losing_trades == 2
    assert stats.win_rate == 40.0
    assert stats.profit_factor == 22.98
    assert stats.total_profit == 100.0
    assert stats.avg_profit == 20.0
    assert stats.best_trade == 100.0
    assert stats.worst_trade == -30.0
    assert stats.today_profit == 30.0
    assert stats.open_trades == 1


def test_rounding():
    stats = compute_statistics([_closed(10.0), _closed(20.0), _closed(-3.0)], None, NOW)
    assert stats.win_rate == 66.7
    assert stats.profit_factor == 10.0


def test_today_uses_utc_calendar_day():
    just_before_midnight = datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc)
    stats = compute_statistics([_closed(10.0, closed_at=just_before_midnight)], None, NOW)
    assert stats.today_profit == 0


def test_get_stats_reads_ledger_and_latest_equity():
    repository.save_trade(_closed(12.0))
    repository.save_equity_snapshot(1, 1000.0)
    repository.save_equity_snapshot(1, 1012.0)
    stats = get_stats(1, NOW)
    assert stats.total_trades == 1
    assert stats.equity == 1012.0


def test_profit_factor_counts_open_winner_against_closed_loser():
    stats = compute_statistics([_open(25.5), _closed(-10.0)], None, NOW)
    assert stats.total_trades == 1
    assert stats.win_rate == 0
    assert stats.profit_factor == 2.55
