"""Integration test fixtures using testcontainers for PostgreSQL and Redis."""

import os
from typing import Generator

import pytest
from sqlalchemy import text

from linkmeta.database.database import DatabaseSessionManager
from linkmeta.database.tables.base_class import Base
from linkmeta.main.config import Settings
from linkmeta.redis.connection import create_redis_client

# IMPORTANT: Configure environment variables BEFORE starting testcontainers
# Ryuk can have connection issues in nested Docker setups
os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

if not os.getenv("DOCKER_HOST") and os.path.exists("/var/run/docker.sock"):
    os.environ["DOCKER_HOST"] = "unix:///var/run/docker.sock"


def pytest_collection_modifyitems(config, items):  # noqa: ARG001
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(pytest.mark.integration)


def _start_or_skip(container):
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker is not available: {exc}")
    return container


@pytest.fixture(scope="session")
def postgres_container() -> Generator:
    from testcontainers.postgres import PostgresContainer

    postgres = _start_or_skip(
        PostgresContainer(
            image="postgres:16-alpine",
            username="integration_test_user",
            password="integration_test_password",
            dbname="integration_test_db",
        )
    )
    yield postgres
    postgres.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator:
    from testcontainers.redis import RedisContainer

    redis = _start_or_skip(RedisContainer(image="redis:7-alpine"))
    yield redis
    redis.stop()


@pytest.fixture(scope="session")
def redis_settings(redis_container) -> Settings:
    return Settings(
        postgres_user="unused",
        postgres_host="localhost",
        postgres_password="unused",
        postgres_port=5432,
        postgres_db="unused",
        redis_host=redis_container.get_container_host_ip(),
        redis_port=int(redis_container.get_exposed_port(6379)),
        redis_db=1,
        testing=True,
    )


@pytest.fixture(scope="session")
def database_settings(postgres_container) -> Settings:
    return Settings(
        postgres_user="integration_test_user",
        postgres_host=postgres_container.get_container_host_ip(),
        postgres_password="integration_test_password",
        postgres_port=int(postgres_container.get_exposed_port(5432)),
        postgres_db="integration_test_db",
        redis_host="localhost",
        redis_port=6379,
        testing=True,
    )


@pytest.fixture
async def redis_client(redis_settings):
    client = create_redis_client(redis_settings)
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()


@pytest.fixture
async def db(database_settings):
    """A fresh session manager over an empty schema."""
    manager = DatabaseSessionManager()
    manager.init(database_settings.database_url)

    async with manager.connect() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)

    yield manager

    async with manager.connect() as connection:
        await connection.execute(text("TRUNCATE sections CASCADE"))
    await manager.close()
