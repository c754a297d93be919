"""
dbrotation/engines/__init__.py — Abstract base class for database engines.

Each engine knows how to:
  1. Open a short-lived connection with a bounded connect timeout
  2. Change a user's password with a single ALTER USER statement
  3. Check that a set of credentials can log in and run a query

Engines differ only in driver, connection parameters and SQL dialect, so the
rotation steps never branch on the engine name themselves.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from dbrotation.errors import DatabaseConnectionFailed, DatabaseStatementFailed
from dbrotation.payload import SecretPayload, normalize_engine


@dataclass(frozen=True)
class ConnectionParams:
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    dbname: str | None = None
    sid: str | None = None
    service_name: str | None = None
    user_host: str = "%"

    @classmethod
    def from_payload(cls, payload: SecretPayload) -> "ConnectionParams":
        return cls(
            host=payload.host,
            port=payload.effective_port,
            username=payload.username,
            password=payload.password,
            dbname=payload.dbname,
            sid=payload.sid,
            service_name=payload.service_name,
            user_host=payload.extra.get("user_host", "%"),
        )


class DatabaseEngine(ABC):
    """Abstract interface for one database dialect."""

    kind = ""
    health_query = "SELECT 1"

    # Driver exceptions raised while connecting / while executing statements.
    connection_errors: tuple[type[BaseException], ...] = ()
    statement_errors: tuple[type[BaseException], ...] = ()

    @abstractmethod
    def _open(self, params: ConnectionParams, timeout: int) -> Any:
        """Open a DB-API connection with the driver's own connect timeout."""
        ...

    @abstractmethod
    def _alter_user(self, conn: Any, username: str, new_password: str, params: ConnectionParams) -> None:
        """Execute the dialect's ALTER USER statement and commit it."""
        ...

    def validate_password_change(self, username: str, new_password: str) -> None:
        """Reject values the dialect cannot express safely, before connecting."""

    @contextmanager
    def connect(self, params: ConnectionParams, timeout: int) -> Iterator[Any]:
        """Yield an open connection and close it on every exit path."""
        try:
            conn = self._open(params, timeout)
        except self.connection_errors as e:
            raise DatabaseConnectionFailed(
                f"{self.kind}: cannot connect to {params.host}:{params.port} as {params.username}: {e}"
            ) from e
        try:
            yield conn
        finally:
            conn.close()

    def change_password(
        self,
        params: ConnectionParams,
        target_username: str,
        new_password: str,
        timeout: int,
    ) -> None:
        """
        Connect with ``params`` and set ``target_username``'s password.

        Exactly one ALTER USER statement is issued; the username is never changed.
        """
        self.validate_password_change(target_username, new_password)
        with self.connect(params, timeout) as conn:
            try:
                self._alter_user(conn, target_username, new_password, params)
            except self.statement_errors as e:
                raise DatabaseStatementFailed(
                    f"{self.kind}: ALTER USER {target_username} failed: {e}"
                ) from e

    def check_connection(self, params: ConnectionParams, timeout: int) -> None:
        """Log in with ``params`` and run the health query."""
        with self.connect(params, timeout) as conn:
            try:
                cursor = conn.cursor()
                try:
                    cursor.execute(self.health_query)
                    cursor.fetchone()
                finally:
                    cursor.close()
            except self.statement_errors as e:
                raise DatabaseStatementFailed(f"{self.kind}: health query failed: {e}") from e


def get_engine(engine: str) -> DatabaseEngine:
    kind = normalize_engine(engine)
    if kind == "postgres":
        from dbrotation.engines.postgres import PostgresEngine
        return PostgresEngine()
    elif kind == "mysql":
        from dbrotation.engines.mysql import MySQLEngine
        return MySQLEngine()
    elif kind == "oracle":
        from dbrotation.engines.oracle import OracleEngine
        return OracleEngine()
    raise AssertionError(f"Engine kind without implementation: {kind}")
