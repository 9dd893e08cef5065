"""
Equity recorder: validation of manual submissions and history window.
"""
from datetime import datetime, timedelta, timezone

import pytest

from tradesync.domain.models import AccountInformation
from tradesync.exceptions import ValidationError
from tradesync.reconciliation.equity import EquityRecorder, parse_equity


@pytest.mark.parametrize("value, expected", [(100, 100.0), ("2500.50", 2500.5), (0.01, 0.01)])
def test_parse_equity_accepts_numbers(value, expected):
    assert parse_equity(value) == expected


@pytest.mark.parametrize("value", [None, "", "abc", float("nan"), "NaN", float("inf"), 0, -5, True, [1]])
def test_parse_equity_rejects(value):
    with pytest.raises(ValidationError):
        parse_equity(value)


def test_record_account_stores_balance():
    snapshot = EquityRecorder().record_account(3, AccountInformation(equity=1050.0, balance=1000.0))
    assert snapshot.id is not None
    assert snapshot.equity == 1050.0
    assert snapshot.balance == 1000.0
    assert snapshot.recorded_at.tzinfo == timezone.utc


def test_manual_snapshot_and_history_order():
    recorder = EquityRecorder()
    recorder.record_manual(3, 1000)
    recorder.record_manual(3, "1100.5")
    recorder.record_manual(4, 5)

    history = recorder.history(3)
    assert [s.equity for s in history] == [1000.0, 1100.5]
    assert history[0].balance is None


def test_history_window_excludes_old_snapshots():
    recorder = EquityRecorder()
    recorder.record_manual(3, 1000)
    future = datetime.now(timezone.utc) + timedelta(days=10)
    assert recorder.history(3, days=5, now=future) == []
    assert len(recorder.history(3, days=30, now=future)) == 1


def test_history_rejects_non_positive_days():
    with pytest.raises(ValidationError):
        EquityRecorder().history(3, days=0)
