"""
Decoders for gateway payloads.

Every function takes the raw JSON value returned by the gateway and returns a
``Decoded`` result. Nothing untyped leaves this module: callers get domain
objects or a malformed marker with a reason.
"""
import math
from datetime import datetime, timezone
from typing import Any, List, Optional

from tradesync.domain.models import (
    AccountInformation,
    AccountState,
    Decoded,
    Direction,
    RemoteDeal,
    RemotePosition,
)
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)

LIFECYCLE_DEPLOYED = "DEPLOYED"
CONNECTIVITY_CONNECTED = "CONNECTED"

TRADE_DEAL_TYPES = {
    "DEAL_TYPE_BUY": Direction.BUY,
    "DEAL_TYPE_SELL": Direction.SELL,
}
POSITION_TYPES = {
    "POSITION_TYPE_BUY": Direction.BUY,
    "POSITION_TYPE_SELL": Direction.SELL,
}
# Entry types that close (part of) a position. DEAL_ENTRY_IN opens one.
CLOSING_ENTRY_TYPES = frozenset({"DEAL_ENTRY_OUT", "DEAL_ENTRY_OUT_BY"})


def to_float(value: Any) -> Optional[float]:
    """Finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or epoch seconds into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _id_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    s = str(value).strip()
    return s or None


def decode_account_state(payload: Any) -> Decoded[AccountState]:
    """Decode the provisioning API's account document."""
    if not isinstance(payload, dict):
        return Decoded.malformed("account state is not an object")
    lifecycle = payload.get("state")
    if not isinstance(lifecycle, str) or not lifecycle:
        return Decoded.malformed("account state has no lifecycle 'state'")
    connectivity = payload.get("connectionStatus")
    region = payload.get("region")
    return Decoded.success(AccountState(
        account_id=_id_str(payload.get("_id") or payload.get("id")) or "",
        lifecycle=lifecycle.upper(),
        connectivity=connectivity.upper() if isinstance(connectivity, str) else "DISCONNECTED",
        region=region if isinstance(region, str) and region else None,
    ))


def decode_account_information(payload: Any) -> Decoded[AccountInformation]:
    """Decode the account-information document (equity/balance)."""
    if not isinstance(payload, dict):
        return Decoded.malformed("account information is not an object")
    equity = to_float(payload.get("equity"))
    if equity is None:
        return Decoded.malformed("account information has no numeric equity")
    return Decoded.success(AccountInformation(
        equity=equity,
        balance=to_float(payload.get("balance")),
    ))


def decode_position(item: Any) -> Optional[RemotePosition]:
    """Decode one open position; None when the entry is unusable."""
    if not isinstance(item, dict):
        return None
    symbol = item.get("symbol")
    direction = POSITION_TYPES.get(str(item.get("type") or "").upper())
    volume = to_float(item.get("volume"))
    if not symbol or direction is None or volume is None or volume <= 0:
        return None
    profit = to_float(item.get("profit"))
    if profit is None:
        profit = to_float(item.get("unrealizedProfit")) or 0.0
    return RemotePosition(
        symbol=str(symbol),
        direction=direction,
        volume=volume,
        open_price=to_float(item.get("openPrice")),
        profit=profit,
        position_id=_id_str(item.get("id")),
        opened_at=parse_time(item.get("time")),
    )


def decode_positions(payload: Any) -> Decoded[List[RemotePosition]]:
    """Decode the open-positions list; unusable entries are dropped and logged."""
    if not isinstance(payload, list):
        return Decoded.malformed("positions payload is not a list")
    positions = []
    for item in payload:
        position = decode_position(item)
        if position is None:
            logger.warning("POSITION_ENTRY_SKIPPED", entry=item if isinstance(item, dict) else str(item)[:100])
            continue
        positions.append(position)
    return Decoded.success(positions)


def is_closing_trade_deal(item: Any) -> bool:
    """
    True only for deals that complete a trade.

    Must be a buy/sell deal, have a closing entry type, carry a symbol and a
    positive volume. Balance/credit operations and opening legs are excluded.
    """
    if not isinstance(item, dict):
        return False
    if str(item.get("type") or "").upper() not in TRADE_DEAL_TYPES:
        return False
    if str(item.get("entryType") or "").upper() not in CLOSING_ENTRY_TYPES:
        return False
    if not item.get("symbol"):
        return False
    volume = to_float(item.get("volume"))
    return volume is not None and volume > 0


def decode_deal(item: Any) -> Optional[RemoteDeal]:
    """Decode one deal; None unless it is a closing trade deal."""
    if not is_closing_trade_deal(item):
        return None
    return RemoteDeal(
        deal_id=_id_str(item.get("id")),
        symbol=str(item["symbol"]),
        direction=TRADE_DEAL_TYPES[str(item["type"]).upper()],
        volume=to_float(item["volume"]),
        price=to_float(item.get("price")),
        profit=to_float(item.get("profit")) or 0.0,
        time=parse_time(item.get("time")),
    )


def decode_deals(payload: Any) -> Decoded[List[RemoteDeal]]:
    """
    Decode the history-deals response and keep only closing trade deals.

    Accepts a bare list or an object with a ``deals`` list.
    """
    if isinstance(payload, dict):
        payload = payload.get("deals")
    if not isinstance(payload, list):
        return Decoded.malformed("deals payload is not a list")
    deals = [d for d in (decode_deal(item) for item in payload) if d is not None]
    logger.debug("DEALS_FILTERED", received=len(payload), closing=len(deals))
    return Decoded.success(deals)


def decode_created_account(payload: Any) -> Decoded[str]:
    """Decode the account-creation response into the remote account id."""
    if not isinstance(payload, dict):
        return Decoded.malformed("account creation response is not an object")
    account_id = _id_str(payload.get("id") or payload.get("_id"))
    if account_id is None:
        return Decoded.malformed("account creation response has no id")
    return Decoded.success(account_id)


def error_message(payload: Any) -> str:
    """Best-effort human message from a gateway error body."""
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return ""
