"""Shared fixtures for postindex tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import Session, SQLModel, create_engine

from postindex.auth import AuthContext
from postindex.models import Post

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.fixture
def engine() -> Engine:
    """In-memory SQLite engine with all tables created."""
    eng = create_engine("sqlite://", echo=False)
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine: Engine) -> Iterator[Session]:
    """SQLModel session bound to the in-memory engine, rolled back after each test."""
    with Session(engine) as s:
        s.begin()
        yield s
        s.rollback()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory on the async engine (objects stay usable after commit)."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def alice() -> AuthContext:
    return AuthContext(user_id="alice", access_token="alice-token")


@pytest.fixture
def bob() -> AuthContext:
    return AuthContext(user_id="bob", access_token="bob-token")


@pytest.fixture
def make_post(session_factory: async_sessionmaker[AsyncSession]):
    """Insert a post directly and return its id."""

    async def _make(user_id: str = "alice", title: str = "Hello", content: str = "body") -> int:
        async with session_factory() as session, session.begin():
            post = Post(user_id=user_id, title=title, content=content)
            session.add(post)
            await session.flush()
            assert post.id is not None
            return post.id

    return _make
