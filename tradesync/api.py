"""
HTTP surface for broker synchronization.

`create_app()` builds the FastAPI app around a SyncService. Identity is
resolved upstream: the trusted user id arrives in the configured header
(``X-User-Id`` by default).

Run with: tradesync serve
"""
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tradesync.constants import EQUITY_HISTORY_DEFAULT_DAYS, TRADES_PAGE_DEFAULT_LIMIT
from tradesync.exceptions import ConfigurationError, ProvisionError, ValidationError
from tradesync.monitoring.logger import get_logger
from tradesync.services.sync_service import SyncService

logger = get_logger(__name__)

SERVICE_NAME = "tradesync"


class ConnectRequest(BaseModel):
    platform: str
    account_number: str
    investor_password: str
    server: str


class ManualTradeRequest(BaseModel):
    symbol: str = ""
    direction: str = ""
    volume: Optional[float] = None
    entry_price: Optional[float] = None
    exit_price: Optional[float] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class EquitySnapshotRequest(BaseModel):
    equity: Any = None


class Unauthorized(Exception):
    pass


def create_app(service: Optional[SyncService] = None) -> FastAPI:
    """Build the API app. A SyncService is created from the loaded config when none is given."""
    svc = service or SyncService()
    user_header = svc.config.api.user_header
    app = FastAPI(title="Broker Sync")

    def current_user(request: Request) -> int:
        raw = request.headers.get(user_header)
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise Unauthorized()

    @app.exception_handler(Unauthorized)
    async def _unauthorized(request: Request, exc: Unauthorized):
        return JSONResponse(status_code=401, content={"error": "Not authenticated"})

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def _not_configured(request: Request, exc: ConfigurationError):
        logger.warning("API_NOT_CONFIGURED", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"error": "Broker synchronization is not configured on this server."},
        )

    @app.exception_handler(ProvisionError)
    async def _provision_failed(request: Request, exc: ProvisionError):
        return JSONResponse(status_code=422, content={"error": str(exc), "hint": exc.hint})

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
        }

    # ---------------- broker ----------------

    @app.post("/api/broker/connect")
    async def connect(body: ConnectRequest, request: Request):
        user_id = current_user(request)
        connection = await svc.connect(
            user_id, body.platform, body.account_number, body.investor_password, body.server
        )
        return JSONResponse(
            status_code=201,
            content={"success": True, "connection": connection.to_dict()},
        )

    @app.get("/api/broker/connections")
    def connections(request: Request):
        user_id = current_user(request)
        return {"connections": [c.to_dict() for c in svc.list_connections(user_id)]}

    @app.post("/api/broker/sync")
    async def sync(request: Request):
        user_id = current_user(request)
        result = await svc.sync(user_id)
        return result.to_dict()

    @app.post("/api/broker/disconnect")
    def disconnect(request: Request):
        user_id = current_user(request)
        svc.disconnect(user_id)
        return {"success": True}

    @app.post("/api/broker/reset")
    def reset(request: Request):
        user_id = current_user(request)
        counts = svc.reset_data(user_id)
        return {"success": True, **counts}

    # ---------------- trades ----------------

    @app.get("/api/trades")
    def list_trades(request: Request, limit: int = TRADES_PAGE_DEFAULT_LIMIT, offset: int = 0):
        user_id = current_user(request)
        page = svc.list_trades(user_id, limit, offset)
        return {
            "trades": [t.to_dict() for t in page["trades"]],
            "total": page["total"],
            "limit": page["limit"],
            "offset": page["offset"],
        }

    @app.post("/api/trades")
    def add_trade(body: ManualTradeRequest, request: Request):
        user_id = current_user(request)
        trade = svc.add_manual_trade(
            user_id,
            symbol=body.symbol,
            direction=body.direction,
            volume=body.volume,
            entry_price=body.entry_price,
            exit_price=body.exit_price,
            opened_at=body.opened_at,
            closed_at=body.closed_at,
        )
        return JSONResponse(status_code=201, content={"success": True, "trade": trade.to_dict()})

    @app.delete("/api/trades/{trade_id}")
    def delete_trade(trade_id: int, request: Request):
        user_id = current_user(request)
        if not svc.delete_trade(user_id, trade_id):
            return JSONResponse(status_code=404, content={"error": "Trade not found"})
        return {"success": True}

    # ---------------- stats / equity ----------------

    @app.get("/api/stats")
    def stats(request: Request):
        user_id = current_user(request)
        return svc.get_stats(user_id).to_dict()

    @app.get("/api/equity-history")
    def equity_history(request: Request, days: int = EQUITY_HISTORY_DEFAULT_DAYS):
        user_id = current_user(request)
        history = svc.get_equity_history(user_id, days)
        return {"history": [s.to_dict() for s in history]}

    @app.post("/api/equity-snapshot")
    def equity_snapshot(body: EquitySnapshotRequest, request: Request):
        user_id = current_user(request)
        snapshot = svc.add_equity_snapshot(user_id, body.equity)
        return JSONResponse(status_code=201, content={"success": True, "snapshot": snapshot.to_dict()})

    return app
