from __future__ import annotations

import datetime
import decimal
import os
from collections.abc import AsyncIterator, Iterator

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqla_relselect import AsyncDatabase, Database, Schema, relation_cache_clear

from .models import Base


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "mysql", "mariadb"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "mysql" | "mariadb":
            from testcontainers.mysql import MySqlContainer

            image = "mysql:8.0" if db_backend == "mysql" else "mariadb:latest"
            container = MySqlContainer(image=image)
            if os.name == "nt":
                container.get_container_host_ip = lambda: "127.0.0.1"
            with container:
                host = container.get_container_host_ip()
                port = container.get_exposed_port(container.port)
                yield (
                    f"mysql+asyncmy://{container.username}:{container.password}"
                    f"@{host}:{port}/{container.dbname}"
                )

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def connection(engine: AsyncEngine, _create_tables: None) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
def schema() -> Schema:
    """Schema with no database bound: enough for rendering and resolution."""
    return Schema.from_base(Base)


@pytest.fixture
def async_schema(connection: AsyncConnection) -> Schema:
    return Schema.from_base(Base, AsyncDatabase(connection))


SEED_ROWS: dict[str, list[dict[str, object]]] = {
    "user": [
        {"id": 1, "name": "alice", "active": True},
        {"id": 2, "name": "bob", "active": True},
        {"id": 3, "name": "charlie", "active": False},
    ],
    "profile": [
        {"id": 1, "bio": "Alice bio", "user_id": 1},
        {"id": 2, "bio": "Bob bio", "user_id": 2},
    ],
    "post": [
        {"id": 1, "title": "Alice Post 1", "published_at": datetime.datetime(2024, 1, 2, 3, 4, 5), "user_id": 1},
        {"id": 2, "title": "Alice Post 2", "published_at": None, "user_id": 1},
        {"id": 3, "title": "Bob Post 1", "published_at": None, "user_id": 2},
        {"id": 4, "title": "Orphan Post", "published_at": None, "user_id": None},
    ],
    "tag": [
        {"id": 1, "name": "python"},
        {"id": 2, "name": "sqlalchemy"},
        {"id": 3, "name": "testing"},
    ],
    "post_tag": [
        {"id": 1, "post_id": 1, "tag_id": 1},
        {"id": 2, "post_id": 1, "tag_id": 2},
        {"id": 3, "post_id": 2, "tag_id": 1},
        {"id": 4, "post_id": 3, "tag_id": 3},
    ],
    "comment": [
        {"id": 1, "text": "Great post!", "post_id": 1},
        {"id": 2, "text": "Nice work", "post_id": 1},
    ],
    "customer": [
        {"id": 5, "name": "acme"},
        {"id": 6, "name": "globex"},
    ],
    "order": [
        {"id": 1, "total": decimal.Decimal("12.50"), "customer_id": 5},
        {"id": 2, "total": decimal.Decimal("3.00"), "customer_id": 5},
        {"id": 3, "total": decimal.Decimal("99.99"), "customer_id": 6},
    ],
    "setting": [
        {"id": 1, "key": "theme", "value": {"dark": True}},
    ],
    "audit": [
        {"post_id": 1, "note": "created"},
        {"post_id": 1, "note": "edited"},
    ],
}


@pytest.fixture
async def seed_data(connection: AsyncConnection) -> dict[str, list[dict[str, object]]]:
    for name, rows in SEED_ROWS.items():
        await connection.execute(Base.metadata.tables[name].insert(), rows)

    return SEED_ROWS


@pytest.fixture
def sync_connection() -> Iterator[sa.Connection]:
    """In-memory SQLite connection for the synchronous handle."""
    sync_engine = sa.create_engine("sqlite://")
    Base.metadata.create_all(sync_engine)
    with sync_engine.connect() as conn:
        for name, rows in SEED_ROWS.items():
            conn.execute(Base.metadata.tables[name].insert(), rows)
        yield conn
    sync_engine.dispose()


@pytest.fixture
def sync_schema(sync_connection: sa.Connection) -> Schema:
    return Schema.from_base(Base, Database(sync_connection))


@pytest.fixture(autouse=True)
def clear_relation_cache() -> Iterator[None]:
    yield
    relation_cache_clear()
