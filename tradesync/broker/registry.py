"""
Connection Registry.

One active remote connection per user, enforced by a partial unique index.
Activating, deactivating and resetting all purge the user's ledger.
"""
from typing import Dict, List, Optional

from tradesync.domain.models import RemoteConnection
from tradesync.monitoring.logger import get_logger
from tradesync.storage import repository

logger = get_logger(__name__)


class ConnectionRegistry:
    """Thin domain wrapper over the connection and ledger repository functions."""

    def activate(self, connection: RemoteConnection) -> RemoteConnection:
        """Deactivate any previous connection, purge the ledger, store ``connection`` as active."""
        return repository.replace_active_connection(connection)

    def disconnect(self, user_id: int) -> Optional[RemoteConnection]:
        """Deactivate the active connection (if any) and purge the ledger."""
        return repository.deactivate_active_connection(user_id)

    def reset_data(self, user_id: int) -> Dict[str, int]:
        """Purge trades and snapshots while keeping the connection."""
        trades_deleted, snapshots_deleted = repository.purge_user_ledger(user_id)
        logger.info(
            "LEDGER_RESET",
            user_id=user_id,
            trades_deleted=trades_deleted,
            snapshots_deleted=snapshots_deleted,
        )
        return {"trades_deleted": trades_deleted, "snapshots_deleted": snapshots_deleted}

    def active(self, user_id: int) -> Optional[RemoteConnection]:
        return repository.get_active_connection(user_id)

    def list(self, user_id: int) -> List[RemoteConnection]:
        return repository.get_connections(user_id)
