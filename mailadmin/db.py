"""Database connection wrapper shared by the admin operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings

# SQLAlchemy dialect name -> name used for the DDL file sets.
PROVIDER_NAMES = {
    "sqlite": "sqlite",
    "mysql": "mysql",
    "mariadb": "mysql",
    "postgresql": "postgres",
    "mssql": "mssql",
    "oracle": "oracle",
}


class DatabaseConnectionError(RuntimeError):
    """Raised when the configured database cannot be reached."""


@dataclass(frozen=True)
class ScriptResult:
    """Terminal outcome of running a multi-statement SQL script."""

    ok: bool
    executed: int
    error: Optional[str] = None
    statement: Optional[str] = None


def split_statements(sql: str) -> Iterator[str]:
    """Yield the statements of a SQL script.

    Blank lines and ``--`` comment lines are skipped. A statement ends on a
    line ending with ``;`` or on a line holding only ``GO``. Trailing text
    without a terminator is not executed.
    """
    buffer: List[str] = []
    for line in sql.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("--"):
            continue
        if trimmed == "GO":
            statement = "\n".join(buffer).strip()
        elif trimmed.endswith(";"):
            buffer.append(line.rstrip()[:-1])
            statement = "\n".join(buffer).strip()
        else:
            buffer.append(line)
            continue
        buffer = []
        if statement:
            yield statement


class Database:
    """A single autocommit connection reused for the whole admin run."""

    def __init__(self, engine: Engine, connection: Connection) -> None:
        self.engine = engine
        self.connection = connection

    @property
    def provider(self) -> str:
        name = self.engine.dialect.name
        return PROVIDER_NAMES.get(name, name)

    def list_tables(self) -> List[str]:
        return inspect(self.connection).get_table_names()

    def has_table(self, name: str) -> bool:
        return name in self.list_tables()

    def execute(
        self, statement: Any, parameters: Optional[Mapping[str, Any]] = None
    ) -> CursorResult:
        return self.connection.execute(statement, parameters or {})

    def exec_script(self, sql: str) -> ScriptResult:
        """Run every statement of ``sql`` and report one terminal result.

        Statement errors are captured rather than raised; execution stops at
        the first failing statement.
        """
        executed = 0
        for statement in split_statements(sql):
            try:
                self.connection.exec_driver_sql(statement)
            except SQLAlchemyError as exc:
                return ScriptResult(
                    ok=False,
                    executed=executed,
                    error=str(getattr(exc, "orig", None) or exc),
                    statement=statement,
                )
            executed += 1
        return ScriptResult(ok=True, executed=executed)

    def close(self) -> None:
        self.connection.close()
        self.engine.dispose()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def connect(settings: Settings) -> Database:
    """Open the write connection described by ``settings.db_dsnw``."""
    engine = create_engine(settings.db_dsnw, echo=settings.sql_debug, future=True)
    try:
        connection = engine.connect().execution_options(isolation_level="AUTOCOMMIT")
    except SQLAlchemyError as exc:
        engine.dispose()
        raise DatabaseConnectionError("Failed to connect to database") from exc
    return Database(engine, connection)
