"""Command line entry point: ``postindex serve`` and ``postindex backfill``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from postindex.backfill import BackfillReport, backfill_embeddings
from postindex.config import Settings
from postindex.wiring import build_handler, start, stop

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure standard logging format for CLI tools."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from postindex.api import create_app

    uvicorn.run(
        create_app(settings),
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        log_level=settings.log_level.lower(),
    )
    return 0


async def _backfill(settings: Settings, args: argparse.Namespace) -> BackfillReport:
    handler = build_handler(settings)
    engine = create_async_engine(settings.store.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await start(handler, settings)
    try:
        return await backfill_embeddings(
            factory,
            handler.embedder,
            handler.store,
            batch_size=args.batch_size,
            limit=args.limit,
        )
    finally:
        await stop(handler)
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="postindex", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the indexing HTTP endpoint")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    backfill = sub.add_parser("backfill", help="Index posts that have no embedding yet")
    backfill.add_argument("--batch-size", type=int, default=32)
    backfill.add_argument("--limit", type=int, default=None, help="Stop after this many posts")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        return _serve(settings, args)

    report = asyncio.run(_backfill(settings, args))
    logger.info("Indexed %d of %d posts", len(report.indexed), report.total)
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
