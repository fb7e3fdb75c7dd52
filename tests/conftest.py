"""Shared test fixtures.

Hey future me - every test gets its OWN SQLite file under tmp_path. In-memory SQLite
gives each pooled connection a separate empty database, which breaks the moment a
service opens a second session_scope(). Foreign keys are ON (see Database), so seed a
user before writing any per-user row.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from peekstash.api import create_app
from peekstash.config import Settings
from peekstash.config.settings import DatabaseSettings, SyncConfig
from peekstash.infrastructure.persistence import Database
from peekstash.infrastructure.persistence.models import StashInstanceModel, UserModel

INSTANCE_A = "11111111-aaaa-4aaa-8aaa-111111111111"
INSTANCE_B = "22222222-bbbb-4bbb-8bbb-222222222222"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(
            url=f"sqlite+aiosqlite:///{tmp_path}/peekstash.db", wal_mode=False
        ),
        sync=SyncConfig(page_size=2, cleanup_page_size=2, startup_sync_enabled=False),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def session_scope(db: Database) -> Callable[..., Any]:
    return db.session_scope


@pytest.fixture
def seed(db: Database) -> Callable[..., Awaitable[None]]:
    """Insert ORM rows in one transaction: await seed(TagModel(...), SceneModel(...))."""

    async def _seed(*rows: Any) -> None:
        async with db.session_scope() as session:
            session.add_all(rows)

    return _seed


@pytest.fixture
async def instances(db: Database) -> tuple[str, str]:
    """Two enabled instances, A before B."""
    async with db.session_scope() as session:
        session.add_all(
            [
                StashInstanceModel(
                    id=INSTANCE_A, name="Alpha", url="http://alpha:9999/graphql", priority=0
                ),
                StashInstanceModel(
                    id=INSTANCE_B, name="Beta", url="http://beta:9999/graphql", priority=1
                ),
            ]
        )
    return INSTANCE_A, INSTANCE_B


@pytest.fixture
async def user_id(db: Database) -> int:
    async with db.session_scope() as session:
        user = UserModel(username="viewer")
        session.add(user)
        await session.flush()
        return user.id


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """API client with the lifespan running but the scheduler left off."""
    app = create_app(settings, start_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client
