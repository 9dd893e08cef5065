"""
Equity recording.

Appends one snapshot per successful account-information fetch and accepts
manual submissions that never touch the gateway.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from tradesync.constants import EQUITY_HISTORY_DEFAULT_DAYS
from tradesync.domain.models import AccountInformation, EquitySnapshot
from tradesync.exceptions import ValidationError
from tradesync.monitoring.logger import get_logger
from tradesync.storage.repository import get_equity_history, save_equity_snapshot

logger = get_logger(__name__)


def parse_equity(value: Any) -> float:
    """
    Validate a caller-supplied equity figure.

    Accepts numbers and numeric strings; rejects booleans, NaN, infinities
    and non-positive values.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError("Equity is required")
    try:
        equity = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Equity must be numeric, got {value!r}")
    if not math.isfinite(equity):
        raise ValidationError("Equity must be a finite number")
    if equity <= 0:
        raise ValidationError("Equity must be positive")
    return equity


class EquityRecorder:
    """Append-only writer and reader for the equity series."""

    def record_account(self, user_id: int, info: AccountInformation) -> EquitySnapshot:
        snapshot = save_equity_snapshot(user_id, info.equity, info.balance)
        logger.info("EQUITY_RECORDED", user_id=user_id, equity=info.equity, balance=info.balance, source="sync")
        return snapshot

    def record_manual(self, user_id: int, equity: Any) -> EquitySnapshot:
        value = parse_equity(equity)
        snapshot = save_equity_snapshot(user_id, value)
        logger.info("EQUITY_RECORDED", user_id=user_id, equity=value, source="manual")
        return snapshot

    def history(
        self,
        user_id: int,
        days: int = EQUITY_HISTORY_DEFAULT_DAYS,
        now: Optional[datetime] = None,
    ) -> List[EquitySnapshot]:
        """Snapshots of the last ``days`` days, oldest first."""
        if days <= 0:
            raise ValidationError("days must be a positive integer")
        now = now or datetime.now(timezone.utc)
        return get_equity_history(user_id, now - timedelta(days=days))
