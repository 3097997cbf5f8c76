"""Integration test fixtures using testcontainers for PostgreSQL and Redis."""

import contextlib
import os
from pathlib import Path
from typing import Generator

import docker
import pytest
from alembic import command
from alembic.config import Config
from docker.errors import DockerException
from sqlalchemy import text
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from trilha.database.database import sessionmanager
from trilha.main.config import Settings, reset_settings, set_settings

# Ryuk can have connection issues in nested Docker setups
os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

PROJECT_DIR = Path(__file__).parent.parent.parent
SIGNING_KEY = "integration-test-audit-signing-key-0123456789"


def _docker_available() -> bool:
    try:
        docker.from_env().ping()
    except DockerException:
        return False
    return True


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """Start a PostgreSQL container for the test session."""
    if not _docker_available():
        pytest.skip("Docker is not available for integration tests")

    postgres = PostgresContainer(
        image="postgres:16-alpine",
        username="integration_test_user",
        password="integration_test_password",
        dbname="integration_test_db",
    )
    with postgres:
        yield postgres


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    if not _docker_available():
        pytest.skip("Docker is not available for integration tests")

    with RedisContainer(image="redis:7-alpine") as redis:
        yield redis


@pytest.fixture(scope="session")
def test_settings(
    postgres_container: PostgresContainer, redis_container: RedisContainer
) -> Settings:
    """Create test settings using testcontainer connection details."""
    return Settings(
        _env_file=None,
        postgres_user="integration_test_user",
        postgres_host=postgres_container.get_container_host_ip(),
        postgres_password="integration_test_password",
        postgres_port=int(postgres_container.get_exposed_port(5432)),
        postgres_db="integration_test_db",
        redis_host=redis_container.get_container_host_ip(),
        redis_port=int(redis_container.get_exposed_port(6379)),
        redis_db=1,
        audit_signing_key=SIGNING_KEY,
        audit_timezone="America/Sao_Paulo",
        testing=True,
    )


@pytest.fixture(scope="session")
def migrated_database(test_settings: Settings):
    """Override global settings and bring the schema to head."""
    reset_settings()
    set_settings(test_settings)

    # env.py reads its URL from the settings set above
    alembic_cfg = Config(str(PROJECT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_DIR / "alembic"))
    command.upgrade(alembic_cfg, "head")

    yield

    reset_settings()


@pytest.fixture(autouse=True)
async def setup_database(migrated_database, test_settings: Settings):  # noqa: ARG001
    """Open the session manager for one test and truncate audit tables after it."""
    sessionmanager.init(test_settings.database_url)

    yield

    async with sessionmanager.session() as session:
        async with session.begin():
            await session.execute(
                text("TRUNCATE TABLE audit_log_signatures, audit_logs RESTART IDENTITY CASCADE")
            )

    await sessionmanager.close()


@pytest.fixture
def db_session(setup_database):  # noqa: ARG001
    """Provide a context manager for database sessions with active transactions."""

    @contextlib.asynccontextmanager
    async def _session():
        async with sessionmanager.session() as session, session.begin():
            yield session

    return _session
