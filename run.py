#!/usr/bin/env python3
"""Run the SquadLedger engine.

Usage:
    python run.py [serve] [--host HOST] [--port PORT] [--reload]
    python run.py sweep

Examples:
    python run.py                      # Serve on localhost:8000
    python run.py serve --port 8080    # Serve on port 8080
    python run.py serve --reload       # Auto-reload for development
    python run.py sweep                # Run the expiry and audit sweeps once
"""

import argparse
import asyncio
import json

import uvicorn


async def _sweep_once() -> dict:
    from squadledger.config import get_settings
    from squadledger.database import close_db, init_db
    from squadledger.logging_config import configure_logging
    from squadledger.services.scheduler_service import run_sweep_cycle

    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
    await init_db()
    try:
        return await run_sweep_cycle()
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(
        description="Run the SquadLedger engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "sweep"],
        default="serve",
        help="serve the HTTP API (default) or run the background sweeps once",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes (development mode)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Uvicorn logging level (default: info)",
    )

    args = parser.parse_args()

    if args.command == "sweep":
        print(json.dumps(asyncio.run(_sweep_once()), indent=2))
        return

    # Per-project write serialization is in-process, so one worker only
    uvicorn.run(
        "squadledger.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
