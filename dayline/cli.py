"""
dayline CLI
Command line interface implemented using Typer
"""

import asyncio
import json
import signal
from typing import List, Optional

import typer
import uvicorn

from dayline.config.loader import get_config
from dayline.core.errors import AnalysisError, human_readable_error
from dayline.core.logger import get_logger

logger = get_logger(__name__)

app = typer.Typer(help="Turn screen recordings into a daily activity timeline")


def _load(config_file: Optional[str]):
    """Load configuration before anything touches the database or providers"""
    return get_config(config_file)


@app.command()
def start(
    host: str = typer.Option("127.0.0.1", help="Server host address"),
    port: int = typer.Option(8000, help="Server port"),
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
    debug: bool = typer.Option(False, help="Enable auto reload and debug logging"),
):
    """Start the API server"""
    _load(config_file)
    logger.info(f"Starting dayline API server on {host}:{port}")
    try:
        uvicorn.run(
            "dayline.app:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
        )
    except OSError as e:
        logger.error(f"Failed to start service: {e}")
        raise typer.Exit(1)


@app.command("init-db")
def init_db(
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
):
    """Initialize database"""
    _load(config_file)
    from dayline.core.db import get_db

    db = get_db()
    typer.echo(f"Database ready: {db.db_path}")


@app.command()
def run(
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
):
    """Run the analysis loop until interrupted"""
    config = _load(config_file)
    from dayline.core.coordinator import AnalysisCoordinator

    async def run_loop():
        coordinator = AnalysisCoordinator(config)
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

        await coordinator.start()
        logger.info("Analysis loop started, press Ctrl+C to stop")
        await stop_event.wait()
        logger.info("Stop signal received...")
        await coordinator.stop(quiet=True)

    try:
        asyncio.run(run_loop())
    except AnalysisError as e:
        logger.error(f"Run failed: {e}")
        typer.echo(human_readable_error(e), err=True)
        raise typer.Exit(1)


@app.command()
def analyze(
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
):
    """Create batches from new recordings and process everything pending once"""
    config = _load(config_file)
    from dayline.core.coordinator import AnalysisCoordinator

    coordinator = AnalysisCoordinator(config)
    try:
        result = asyncio.run(coordinator.run_once())
    except AnalysisError as e:
        typer.echo(human_readable_error(e), err=True)
        raise typer.Exit(1)
    typer.echo(
        f"{result['created']} batches created, {result['processed']} processed, "
        f"{result['failed']} failed"
    )
    if result["failed"]:
        raise typer.Exit(1)


@app.command()
def reprocess(
    batch_id: Optional[List[int]] = typer.Option(
        None, "--batch-id", help="Batch id to reprocess, repeatable"
    ),
    day: Optional[str] = typer.Option(None, help="Reprocess every batch of this day (YYYY-MM-DD)"),
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
):
    """Reprocess selected batches or a whole day"""
    if not batch_id and not day:
        typer.echo("Pass --batch-id or --day", err=True)
        raise typer.Exit(2)

    config = _load(config_file)
    from dayline.core.coordinator import AnalysisCoordinator

    manager = AnalysisCoordinator(config).ensure_manager()
    try:
        if batch_id:
            asyncio.run(manager.reprocess_batches(batch_id, typer.echo))
        else:
            asyncio.run(manager.reprocess_day(day, typer.echo))
    except AnalysisError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)


@app.command()
def timeline(
    day: str = typer.Argument(..., help="Logical day (YYYY-MM-DD)"),
    raw: bool = typer.Option(False, help="Print stored cards without merging"),
    config_file: Optional[str] = typer.Option(None, help="Configuration file path"),
):
    """Print a day's timeline as JSON"""
    config = _load(config_file)
    from dayline.core.db import get_db
    from dayline.processing.merger import TimelineMerger

    cards = get_db().fetch_timeline_cards(day)
    if not raw:
        gap = int(config.get("timeline.merge_gap_minutes", 5))
        cards = TimelineMerger(gap_threshold_minutes=gap).merge(cards)
    typer.echo(json.dumps([card.model_dump(mode="json") for card in cards], indent=2))


def main():
    """Main function"""
    app()


if __name__ == "__main__":
    main()
