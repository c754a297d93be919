"""
dbrotation/engines/postgres.py — PostgreSQL password changes via psycopg2.
"""
import psycopg2
from psycopg2 import sql

from dbrotation.engines import ConnectionParams, DatabaseEngine


class PostgresEngine(DatabaseEngine):
    kind = "postgres"
    connection_errors = (psycopg2.OperationalError,)
    statement_errors = (psycopg2.Error,)

    def _open(self, params: ConnectionParams, timeout: int):
        conn = psycopg2.connect(
            host=params.host,
            port=params.port,
            user=params.username,
            password=params.password,
            dbname=params.dbname or "postgres",
            connect_timeout=timeout,
        )
        conn.autocommit = True
        return conn

    def _alter_user(self, conn, username: str, new_password: str, params: ConnectionParams) -> None:
        statement = sql.SQL("ALTER USER {} WITH PASSWORD %s").format(sql.Identifier(username))
        with conn.cursor() as cur:
            cur.execute(statement, (new_password,))
