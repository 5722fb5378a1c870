"""ICTFlow — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
wires the tick feed, the per-instrument engines and the reporting
collaborators together.
"""

import logging

from fastapi import FastAPI

from ictflow.api.routers import router

app = FastAPI(title="ICTFlow Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("ictflow")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments, build the pipeline and run until interrupted."""
    import argparse
    import asyncio
    import signal
    from zoneinfo import ZoneInfo

    from ictflow.api.routers import configure_routers
    from ictflow.config import load_config, load_instruments
    from ictflow.engine_manager import EngineManager
    from ictflow.feed.finnhub_client import FinnhubFeed
    from ictflow.notify.dashboard_client import DashboardClient
    from ictflow.notify.outbox import Outbox
    from ictflow.notify.telegram import LogNotifier, TelegramNotifier
    from ictflow.repos.db import init_db
    from ictflow.repos.snapshot_repo import SnapshotRepo
    from ictflow.repos.trade_repo import TradeRepo

    parser = argparse.ArgumentParser(description="ICTFlow signal engine")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the feed and engines without the API server",
    )
    parser.add_argument("--env", help="Path to a .env file (default: ./.env)")
    args = parser.parse_args()

    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    instruments = load_instruments(config.instruments_path)
    tz = ZoneInfo(config.session_timezone)

    trade_repo = TradeRepo(config.db_path, tz=tz)
    snapshot_repo = SnapshotRepo(config.db_path)

    if config.telegram_enabled:
        notifier = TelegramNotifier(
            config.telegram_bot_token,
            config.telegram_chat_id,
            throttle_seconds=config.notify_throttle_seconds,
        )
    else:
        logger.info("Telegram not configured; notifications go to the log.")
        notifier = LogNotifier(throttle_seconds=config.notify_throttle_seconds)

    dashboard = DashboardClient(config.dashboard_url) if config.dashboard_url else None

    manager = EngineManager(
        instruments,
        outbox=Outbox(max_retries=config.outbox_max_retries),
        notifier=notifier,
        trade_repo=trade_repo,
        snapshot_repo=snapshot_repo,
        dashboard=dashboard,
        tz=tz,
    )
    manager.build_engines()
    restored = manager.restore_snapshots()
    if restored:
        logger.info("Restored session snapshots for %s", ", ".join(restored))

    configure_routers(trade_repo=trade_repo, engine_manager=manager)

    feed = FinnhubFeed(config.finnhub_api_key, manager.feed_symbols, manager.handle_tick)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        feed.stop()
        manager.stop_all()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.engine_only:
        asyncio.run(_run_engines_only(manager, feed))
    else:
        asyncio.run(_run_engine_manager(manager, feed, port=config.health_port))


async def _run_engine_manager(manager, feed, port: int = 8080) -> None:
    """Start the API server, the feed and all instrument streams concurrently."""
    import asyncio
    import uvicorn

    logger.info("Starting ICTFlow with %d instrument(s).", len(manager.instrument_ids))

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    logger.info("Internal API available at http://localhost:%d", port)
    results = await asyncio.gather(
        server.serve(),
        manager.run_all(),
        feed.run(),
        return_exceptions=True,
    )
    logger.info("ICTFlow stopped. Results: %s", results)


async def _run_engines_only(manager, feed) -> None:
    """Run the feed and engines without starting the API server."""
    import asyncio

    logger.info(
        "Starting ICTFlow engines (no API) with %d instrument(s).",
        len(manager.instrument_ids),
    )
    await asyncio.gather(manager.run_all(), feed.run())
    logger.info("ICTFlow engines stopped.")


if __name__ == "__main__":
    _run_cli()
