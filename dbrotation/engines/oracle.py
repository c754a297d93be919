"""
dbrotation/engines/oracle.py — Oracle password changes via python-oracledb (thin mode).

Oracle DDL cannot take bind variables, so the statement is built from the
username and password after both are checked against what the quoted
ALTER USER form accepts.
"""
import re

import oracledb

from dbrotation.engines import ConnectionParams, DatabaseEngine
from dbrotation.errors import UnsupportedCredentials

DEFAULT_SID = "ORCL"
MAX_PASSWORD_LENGTH = 30

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")


class OracleEngine(DatabaseEngine):
    kind = "oracle"
    health_query = "SELECT 1 FROM DUAL"
    connection_errors = (oracledb.Error,)
    statement_errors = (oracledb.Error,)

    def make_dsn(self, params: ConnectionParams) -> str:
        if params.service_name:
            return oracledb.makedsn(params.host, params.port, service_name=params.service_name)
        return oracledb.makedsn(params.host, params.port, sid=params.sid or DEFAULT_SID)

    def validate_password_change(self, username: str, new_password: str) -> None:
        if not _IDENTIFIER.match(username):
            raise UnsupportedCredentials(f"oracle: {username!r} is not a plain identifier")
        if '"' in new_password or "\x00" in new_password:
            raise UnsupportedCredentials("oracle: password contains a character the quoted form rejects")
        if len(new_password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
            raise UnsupportedCredentials(
                f"oracle: password longer than {MAX_PASSWORD_LENGTH} bytes"
            )

    def _open(self, params: ConnectionParams, timeout: int):
        return oracledb.connect(
            user=params.username,
            password=params.password,
            dsn=self.make_dsn(params),
            tcp_connect_timeout=timeout,
        )

    def _alter_user(self, conn, username: str, new_password: str, params: ConnectionParams) -> None:
        cur = conn.cursor()
        try:
            cur.execute(f'ALTER USER {username} IDENTIFIED BY "{new_password}"')
        finally:
            cur.close()
        conn.commit()
