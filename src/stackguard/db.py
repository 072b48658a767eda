"""Database access for health probes and informational readings.

Two routes reach the database.  When ``POSTGRES_HOST`` is configured a
SQLAlchemy engine connects to it directly.  Otherwise the database sits
on the internal compose network and :class:`ContainerDatabase` runs
``pg_isready`` and ``psql`` inside the ``postgres`` container.

Credentials come from the ``postgres_password`` secret (and the
``postgres_user`` secret when present, which overrides
``POSTGRES_USER``).  Every statement here is read-only.
"""

from __future__ import annotations

from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.engine import URL, Engine

from .config import LONG_QUERY_MINUTES
from .docker.compose import ComposeClient
from .secretstore.store import SecretStore
from .settings.models import Settings

CONNECT_TIMEOUT = 5
DEFAULT_HOST = "127.0.0.1"
EXEC_TIMEOUT = 30.0

LONG_RUNNING_SQL = (
    "SELECT count(*) FROM pg_stat_activity "
    "WHERE state != 'idle' AND query_start < now() - make_interval(mins => :minutes)"
)
VERSION_SQL = "SHOW server_version"
SIZE_SQL = "SELECT pg_size_pretty(pg_database_size(current_database()))"


def database_user(settings: Settings, store: SecretStore) -> str:
    return store.read_optional("postgres_user") or settings.postgres_user


def database_url(settings: Settings, store: SecretStore) -> URL:
    """Build the PostgreSQL URL; the password never appears in logs.

    Raises:
        ConfigError: If the ``postgres_password`` secret is missing.
    """
    return URL.create(
        "postgresql+psycopg2",
        username=database_user(settings, store),
        password=store.read("postgres_password"),
        host=settings.postgres_host or DEFAULT_HOST,
        port=settings.postgres_port,
        database=settings.postgres_db,
    )


def get_engine(url: URL | str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        url: A database URL.
        **kwargs: Extra keyword arguments for ``sqlalchemy.create_engine``.
    """
    kwargs.setdefault("pool_pre_ping", True)
    return sa.create_engine(url, **kwargs)


def build_engine(settings: Settings, store: SecretStore) -> Engine:
    return get_engine(
        database_url(settings, store),
        connect_args={"connect_timeout": CONNECT_TIMEOUT},
    )


def select_one(engine: Engine) -> bool:
    """Round-trip ``SELECT 1``; raises on connection errors."""
    with engine.connect() as conn:
        result = conn.execute(sa.text("SELECT 1")).scalar()
    if result != 1:
        raise RuntimeError(f"Unexpected result {result}")
    return True


def long_running_queries(engine: Engine, minutes: int = LONG_QUERY_MINUTES) -> int:
    """Number of non-idle sessions whose query started over ``minutes`` ago."""
    with engine.connect() as conn:
        return int(conn.execute(sa.text(LONG_RUNNING_SQL), {"minutes": minutes}).scalar() or 0)


def server_version(engine: Engine) -> Optional[str]:
    with engine.connect() as conn:
        return conn.execute(sa.text(VERSION_SQL)).scalar()


def database_size(engine: Engine, database: str) -> Optional[str]:
    with engine.connect() as conn:
        return conn.execute(
            sa.text("SELECT pg_size_pretty(pg_database_size(:db))"), {"db": database}
        ).scalar()


class ContainerDatabase:
    """Read-only access through the ``postgres`` service container.

    The password reaches ``psql`` as ``PGPASSWORD`` in the exec
    environment, forwarded by name, never on the command line.
    """

    def __init__(self, compose: ComposeClient, settings: Settings, store: SecretStore) -> None:
        self.compose = compose
        self.settings = settings
        self.store = store

    def _exec(self, command: Sequence[str], env=None):
        proc = self.compose.exec("postgres", list(command), env=env, timeout=EXEC_TIMEOUT)
        if proc.returncode != 0:
            lines = ((proc.stderr or "") + (proc.stdout or "")).strip().splitlines()
            raise RuntimeError(lines[-1] if lines else f"{command[0]} exited with {proc.returncode}")
        return proc

    def ready(self) -> bool:
        """``pg_isready`` for the configured user and database; raises when not ready."""
        self._exec(
            [
                "pg_isready",
                "-U",
                database_user(self.settings, self.store),
                "-d",
                self.settings.postgres_db,
            ]
        )
        return True

    def scalar(self, statement: str) -> Optional[str]:
        proc = self._exec(
            [
                "psql",
                "-U",
                database_user(self.settings, self.store),
                "-d",
                self.settings.postgres_db,
                "-tAc",
                statement,
            ],
            env={"PGPASSWORD": self.store.read("postgres_password")},
        )
        return (proc.stdout or "").strip() or None

    def long_running_queries(self, minutes: int = LONG_QUERY_MINUTES) -> int:
        statement = LONG_RUNNING_SQL.replace(":minutes", str(int(minutes)))
        return int(self.scalar(statement) or 0)

    def server_version(self) -> Optional[str]:
        return self.scalar(VERSION_SQL)

    def database_size(self) -> Optional[str]:
        return self.scalar(SIZE_SQL)


__all__ = [
    "ContainerDatabase",
    "database_user",
    "database_url",
    "get_engine",
    "build_engine",
    "select_one",
    "long_running_queries",
    "server_version",
    "database_size",
]
