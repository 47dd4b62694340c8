from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.orm import Session
from sqlalchemy.pool import Pool, StaticPool

from stacks.service.database.configuration import DatabaseConfiguration
from stacks.sqlalchemy.model.base import Base
from stacks.util.json import json_serializer
from stacks.util.log import LoggerMixin


class SessionManager(LoggerMixin):
    """Builds engines and sessions for the circulation database."""

    @classmethod
    def engine(
        cls,
        url: str | None = None,
        poolclass: type[Pool] | None = None,
        application_name: str | None = None,
    ) -> Engine:
        """An engine for `url`, defaulting to STACKS_DATABASE_URL.

        :param application_name: Shown in `pg_stat_activity` on PostgreSQL.
        """
        config = DatabaseConfiguration()
        parsed = make_url(url or config.url)
        connect_args: dict[str, Any] = {}

        match parsed.get_backend_name():
            case "postgresql" if application_name:
                connect_args["application_name"] = application_name
            case "sqlite":
                connect_args["check_same_thread"] = False
                if parsed.database in (None, "", ":memory:"):
                    # Each new connection would otherwise get its own empty database.
                    poolclass = StaticPool

        engine = create_engine(
            parsed,
            echo=config.echo,
            json_serializer=json_serializer,
            pool_pre_ping=True,
            poolclass=poolclass,
            connect_args=connect_args,
        )
        if parsed.get_backend_name() == "sqlite":
            cls._use_explicit_sqlite_transactions(engine)
        cls.logger().debug(f"Created engine for {cls._safe(parsed)}")
        return engine

    @staticmethod
    def _safe(url: URL) -> str:
        return url.render_as_string(hide_password=True)

    @staticmethod
    def _use_explicit_sqlite_transactions(engine: Engine) -> None:
        """Have SQLAlchemy emit BEGIN itself so SAVEPOINT works on pysqlite.

        See https://docs.sqlalchemy.org/en/20/dialects/sqlite.html#serializable-isolation-savepoints-transactional-ddl
        """

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

        @event.listens_for(engine, "begin")
        def on_begin(conn: Connection) -> None:
            conn.exec_driver_sql("BEGIN")

    @classmethod
    def initialize_schema(cls, engine: Engine | Connection) -> None:
        # Importing the package registers every model with Base.metadata.
        import stacks.sqlalchemy.model  # noqa: F401

        Base.metadata.create_all(engine)

    @classmethod
    def session(
        cls, url: str | None = None, application_name: str | None = None
    ) -> Session:
        engine = cls.engine(url, application_name=application_name)
        return Session(engine.connect())


def production_session(application_name: type[object] | str) -> Session:
    """A session on the configured database, for scripts."""
    if isinstance(application_name, type):
        application_name = f"{application_name.__module__}.{application_name.__qualname__}"
    return SessionManager.session(application_name=application_name)
