"""Shared fixtures for PostPulse tests."""

import pytest
import pytest_asyncio

from postpulse.core.db import build_engine, build_session_factory, create_all

from factories import InMemoryPostStore, make_candidate


@pytest.fixture
def store():
    return InMemoryPostStore()


@pytest.fixture
def three_candidates():
    return [
        make_candidate("1001", favorite_count=10, share_count=1),
        make_candidate("1002", favorite_count=20, share_count=2),
        make_candidate("1003", favorite_count=30, share_count=3),
    ]


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """File-backed SQLite database with the schema created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'posts.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return build_session_factory(sqlite_engine)
