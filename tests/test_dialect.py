"""Tests for dialect.py — dialect detection and upsert."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import select

from postindex.dialect import get_dialect, upsert_row
from postindex.models import PostEmbedding, Tag


def _row(embedding: str, model_name: str) -> dict:
    return {
        "post_id": "1",
        "embedding": embedding,
        "model_name": model_name,
        "computed_at": datetime.now(UTC),
    }


class TestGetDialect:
    async def test_sqlite_async(self):
        engine = create_async_engine("sqlite+aiosqlite://", echo=False)
        assert get_dialect(engine) == "sqlite"
        await engine.dispose()

    def test_sqlite_sync(self):
        from sqlmodel import create_engine

        engine = create_engine("sqlite://", echo=False)
        assert get_dialect(engine) == "sqlite"


class TestUpsertRow:
    async def test_insert(self, session_factory):
        async with session_factory() as session:
            rowcount = await upsert_row(
                session,
                "sqlite",
                PostEmbedding,
                values=_row("[0.6,0.8]", "m"),
                conflict_keys=["post_id"],
            )
            await session.commit()
            assert rowcount >= 0

            row = await session.get(PostEmbedding, "1")
            assert row is not None
            assert row.embedding == "[0.6,0.8]"

    async def test_update_on_conflict(self, session_factory):
        async with session_factory() as session:
            for embedding in ("[0.6,0.8]", "[1.0,0.0]"):
                await upsert_row(
                    session,
                    "sqlite",
                    PostEmbedding,
                    values=_row(embedding, "m"),
                    conflict_keys=["post_id"],
                )
            await session.commit()

        async with session_factory() as session:
            result = await session.execute(select(PostEmbedding))
            rows = result.scalars().all()
            assert len(rows) == 1
            assert rows[0].embedding == "[1.0,0.0]"

    async def test_update_keys_limits_columns(self, session_factory):
        async with session_factory() as session:
            await upsert_row(
                session,
                "sqlite",
                PostEmbedding,
                values=_row("[0.6,0.8]", "first"),
                conflict_keys=["post_id"],
            )
            await upsert_row(
                session,
                "sqlite",
                PostEmbedding,
                values=_row("[1.0,0.0]", "second"),
                conflict_keys=["post_id"],
                update_keys=["embedding"],
            )
            await session.commit()

        async with session_factory() as session:
            row = await session.get(PostEmbedding, "1")
            assert row is not None
            assert row.embedding == "[1.0,0.0]"
            assert row.model_name == "first"

    async def test_do_nothing_when_only_keys(self, session_factory):
        async with session_factory() as session:
            await upsert_row(session, "sqlite", Tag, values={"name": "python"}, conflict_keys=["name"])
            await upsert_row(session, "sqlite", Tag, values={"name": "python"}, conflict_keys=["name"])
            await session.commit()

        async with session_factory() as session:
            result = await session.execute(select(Tag).where(Tag.name == "python"))
            assert len(result.scalars().all()) == 1

    async def test_unsupported_dialect(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(ValueError, match="not supported"):
                await upsert_row(
                    session,
                    "mssql",
                    PostEmbedding,
                    values=_row("[1.0]", "m"),
                    conflict_keys=["post_id"],
                )
