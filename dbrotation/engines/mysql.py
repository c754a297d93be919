"""
dbrotation/engines/mysql.py — MySQL and MariaDB password changes via PyMySQL.

The account is addressed as 'user'@'host'; the host part comes from the
secret's optional "user_host" key and defaults to '%'.
"""
import pymysql

from dbrotation.engines import ConnectionParams, DatabaseEngine


class MySQLEngine(DatabaseEngine):
    kind = "mysql"
    connection_errors = (pymysql.err.OperationalError, pymysql.err.InterfaceError)
    statement_errors = (pymysql.err.MySQLError,)

    def _open(self, params: ConnectionParams, timeout: int):
        return pymysql.connect(
            host=params.host,
            port=params.port,
            user=params.username,
            password=params.password,
            database=params.dbname,
            connect_timeout=timeout,
        )

    def _alter_user(self, conn, username: str, new_password: str, params: ConnectionParams) -> None:
        with conn.cursor() as cur:
            cur.execute(
                "ALTER USER %s@%s IDENTIFIED BY %s",
                (username, params.user_host, new_password),
            )
        conn.commit()
