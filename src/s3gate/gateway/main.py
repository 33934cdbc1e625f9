"""Command-line entrypoint for running the gateway."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Optional, Sequence

import structlog
import uvicorn

from ..common.settings import GatewaySettings
from .app import create_app


LOGGER = structlog.get_logger("s3gate.main")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve an object-storage bucket over plain HTTP")
    parser.add_argument("--bucket", help="Bucket holding the objects (S3GATE_BUCKET)")
    parser.add_argument("--prefix", dest="key_prefix", help="Key prefix prepended to every request path")
    parser.add_argument(
        "--header-mapping",
        dest="header_mapping",
        help="Headers copied into object metadata, e.g. 'x-build-id=build,x-commit=commit'",
    )
    parser.add_argument("--host", help="Listen address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--log-level", dest="log_level", help="Log level (INFO, DEBUG, ...)")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> GatewaySettings:
    overrides: dict[str, Any] = {
        name: value
        for name, value in vars(args).items()
        if value is not None
    }
    return GatewaySettings(**overrides)


async def serve(settings: GatewaySettings) -> None:
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        lifespan="off",
    )
    server = uvicorn.Server(config)
    LOGGER.info(
        "Starting http cache server",
        address=f"{settings.host}:{settings.port}",
        bucket=settings.bucket,
        key_prefix=settings.key_prefix,
    )
    await server.serve()


def main(argv: Optional[Sequence[str]] = None) -> None:
    settings = load_settings(parse_args(argv))
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
