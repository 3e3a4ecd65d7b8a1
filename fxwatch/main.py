"""FXWatch — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
runs the monitoring loop.
"""

import logging

from fastapi import FastAPI

from fxwatch.api.routers import router

app = FastAPI(title="FXWatch Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("fxwatch")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments, wire components and run until interrupted."""
    import argparse
    import asyncio
    import signal

    from fxwatch.api.routers import configure_routers
    from fxwatch.config import load_config
    from fxwatch.market.alpha_vantage import AlphaVantageClient
    from fxwatch.monitor.engine import MonitoringLoop
    from fxwatch.portfolio.ledger import PortfolioLedger
    from fxwatch.repos.db import init_db
    from fxwatch.repos.ledger_repo import LedgerRepo
    from fxwatch.tools import MarketTools

    parser = argparse.ArgumentParser(description="FXWatch currency monitor")
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env)")
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run the monitoring loop without the API server",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop after this many ticks (default: run until interrupted)",
    )
    args = parser.parse_args()

    config = load_config(args.env_file)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    repo = LedgerRepo(config.db_path)
    ledger = repo.load_ledger()
    if ledger is None:
        ledger = PortfolioLedger(
            config.monitor.initial_amount, config.monitor.initial_currency
        )
        repo.save_portfolio(ledger.initial_value, ledger.currency)
        logger.info("Created %.2f %s paper portfolio", ledger.initial_value, ledger.currency)

    client = AlphaVantageClient(config)
    tools = MarketTools(client, ledger=ledger)

    async def _main() -> None:
        loop = MonitoringLoop(config.monitor, client, ledger=ledger, repo=repo)
        configure_routers(monitor=loop, ledger=ledger, tools=tools)

        def handle_shutdown(signum, frame):
            logger.info("Shutdown signal received, stopping the loop.")
            loop.stop()

        signal.signal(signal.SIGINT, handle_shutdown)

        if args.no_api:
            await _run_loop_only(loop, args.max_cycles)
        else:
            await _run_with_api(loop, config.api_port, args.max_cycles)

    asyncio.run(_main())


async def _consume_alerts(loop) -> None:
    """Drain the loop's alert queue into the API buffer and the log."""
    from fxwatch.api.routers import push_alert

    while True:
        alert = await loop.alerts.get()
        push_alert(alert)
        level = logging.WARNING if alert.severity != "info" else logging.INFO
        logger.log(level, "[%s] %s", alert.kind, alert.message)


async def _run_loop_only(loop, max_cycles: int) -> None:
    import asyncio

    consumer = asyncio.create_task(_consume_alerts(loop))
    try:
        await loop.run(max_cycles=max_cycles)
    finally:
        consumer.cancel()
    logger.info("FXWatch stopped.")


async def _run_with_api(loop, port: int, max_cycles: int) -> None:
    """Start the API server and the monitoring loop concurrently."""
    import asyncio

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_monitor():
        try:
            await loop.run(max_cycles=max_cycles)
        finally:
            server.should_exit = True

    async def _run_server():
        try:
            await server.serve()
        finally:
            loop.stop()

    consumer = asyncio.create_task(_consume_alerts(loop))
    logger.info("API available at http://localhost:%d", port)
    try:
        results = await asyncio.gather(
            _run_server(),
            _run_monitor(),
            return_exceptions=True,
        )
    finally:
        consumer.cancel()
    logger.info("FXWatch stopped. Results: %s", [type(r).__name__ for r in results])


if __name__ == "__main__":
    _run_cli()
