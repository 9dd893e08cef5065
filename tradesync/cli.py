"""
CLI entrypoint for the broker synchronization service.

Provides commands for serving the API, creating tables, and running
sync / stats / reset for one user.
"""
import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from tradesync.config.config import Config, load_config
from tradesync.monitoring.logger import get_logger, setup_logging
from tradesync.storage.db import init_db

app = typer.Typer(
    name="tradesync",
    help="Broker synchronization and trade reconciliation",
    add_completion=False,
)

logger = get_logger(__name__)

ConfigOption = typer.Option(None, "--config", help="Path to config file (defaults to the bundled config.yaml)")


def _bootstrap(config_path: Optional[Path]) -> Config:
    config = load_config(str(config_path) if config_path else None)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    if not config.data.database_url:
        typer.echo("DATABASE_URL is not configured", err=True)
        raise typer.Exit(code=1)
    init_db(config.data.database_url)
    return config


def _service(config: Config):
    from tradesync.services.sync_service import SyncService

    return SyncService(config)


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (overrides config)"),
):
    """
    Run the HTTP API.

    Example:
        tradesync serve --port 8080
    """
    import uvicorn
    from tradesync.api import create_app

    config = _bootstrap(config_path)
    bind_host = host or config.api.host
    bind_port = port or config.api.port
    logger.info("API_STARTING", host=bind_host, port=bind_port, environment=config.environment)
    uvicorn.run(create_app(_service(config)), host=bind_host, port=bind_port, log_config=None)


@app.command("init-db")
def init_db_command(config_path: Optional[Path] = ConfigOption):
    """Create the database tables."""
    _bootstrap(config_path)
    typer.echo("Database tables created")


@app.command()
def sync(
    user_id: int = typer.Option(..., "--user-id", help="User whose active account to synchronize"),
    config_path: Optional[Path] = ConfigOption,
):
    """
    Synchronize one user's active remote account.

    Exit code 0 on success, 2 for retryable outcomes, 1 otherwise.
    """
    config = _bootstrap(config_path)
    result = asyncio.run(_service(config).sync(user_id))
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if result.success:
        return
    raise typer.Exit(code=2 if result.status.retryable else 1)


@app.command()
def stats(
    user_id: int = typer.Option(..., "--user-id", help="User to report on"),
    config_path: Optional[Path] = ConfigOption,
):
    """Print ledger statistics for a user."""
    config = _bootstrap(config_path)
    snapshot = _service(config).get_stats(user_id)

    typer.echo("\n" + "=" * 40)
    typer.echo(f"STATISTICS: user {user_id}")
    typer.echo("=" * 40)
    typer.echo(f"Equity:         {snapshot.equity:,.2f}")
    typer.echo(f"Trades:         {snapshot.total_trades} ({snapshot.winning_trades}W-{snapshot.losing_trades}L)")
    typer.echo(f"Win Rate:       {snapshot.win_rate:.1f}%")
    typer.echo(f"Profit Factor:  {snapshot.profit_factor:.2f}")
    typer.echo(f"Total Profit:   {snapshot.total_profit:,.2f}")
    typer.echo(f"Best / Worst:   {snapshot.best_trade:,.2f} / {snapshot.worst_trade:,.2f}")
    typer.echo(f"Today:          {snapshot.today_profit:,.2f}")
    typer.echo(f"Open Trades:    {snapshot.open_trades}")
    typer.echo("=" * 40 + "\n")


@app.command()
def reset(
    user_id: int = typer.Option(..., "--user-id", help="User whose ledger to purge"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Optional[Path] = ConfigOption,
):
    """Delete a user's trades and equity snapshots, keeping the connection."""
    if not yes and not typer.confirm(f"Delete all trades and equity snapshots of user {user_id}?"):
        raise typer.Abort()
    config = _bootstrap(config_path)
    counts = _service(config).reset_data(user_id)
    typer.echo(f"Deleted {counts['trades_deleted']} trades and {counts['snapshots_deleted']} equity snapshots")


if __name__ == "__main__":
    app()
