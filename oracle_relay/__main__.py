"""Command line entry point: ``python -m oracle_relay``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .config import load_config
from .context import build_context
from .errors import OracleError
from .service import OracleService

LOGGER = logging.getLogger("oracle_relay.cli")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay on-chain AI requests to inference and storage backends.")
    parser.add_argument("--log-level", default="INFO", help="Python logging level (default: INFO)")
    parser.add_argument(
        "--http-port",
        type=int,
        default=None,
        help="Serve /healthz, /readyz and /metrics on this port and run the relay inside the server",
    )
    parser.add_argument("--http-host", default="0.0.0.0", help="Bind address for --http-port")
    return parser


async def _run(service: OracleService) -> None:
    try:
        await service.run()
    finally:
        await service.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        config = load_config()
        service = OracleService(build_context(config))
    except OracleError as exc:
        LOGGER.error("Startup failed: %s", exc)
        return 1
    LOGGER.info("Starting oracle relay on %s (confidential=%s)", config.network, config.is_confidential)

    if args.http_port:
        import uvicorn

        from .process import create_app

        uvicorn.run(create_app(service), host=args.http_host, port=args.http_port)
        return 0

    try:
        asyncio.run(_run(service))
    except OracleError as exc:
        LOGGER.error("Oracle relay stopped: %s", exc)
        return 1
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
