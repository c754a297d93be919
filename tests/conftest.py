"""Pytest fixtures for rotation tests."""

import pytest

from dbrotation.backends.memory_backend import MemoryBackend
from dbrotation.config import RotationSettings
from dbrotation.engines import ConnectionParams, DatabaseEngine
from dbrotation.payload import SecretPayload, normalize_engine
from dbrotation.rotate import RotationEngine

SECRET_ID = "prod/app/db"
CURRENT_TOKEN = "V0"
TOKEN = "T1"


class FakeCursor:
    def __init__(self, db: "FakeDatabase") -> None:
        self.db = db

    def execute(self, statement: str) -> None:
        self.db.queries.append(statement)

    def fetchone(self) -> tuple:
        return (1,)

    def close(self) -> None:
        pass


class FakeConnection:
    def __init__(self, db: "FakeDatabase") -> None:
        self.db = db
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self.db)

    def close(self) -> None:
        self.closed = True
        self.db.open_connections -= 1


class FakeDatabase:
    """Accounts of a database server: username → password."""

    def __init__(self, users: dict[str, str]) -> None:
        self.users = dict(users)
        self.logins: list[tuple[str, str]] = []
        self.alters: list[tuple[str, str]] = []
        self.queries: list[str] = []
        self.open_connections = 0
        self.reachable = True
        self.fail_alter = False


class FakeEngine(DatabaseEngine):
    """DatabaseEngine backed by FakeDatabase instead of a driver."""

    kind = "fake"
    connection_errors = (ConnectionRefusedError,)
    statement_errors = (RuntimeError,)

    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    def _open(self, params: ConnectionParams, timeout: int) -> FakeConnection:
        self.db.logins.append((params.username, params.password))
        if not self.db.reachable:
            raise ConnectionRefusedError("connection timed out")
        if self.db.users.get(params.username) != params.password:
            raise ConnectionRefusedError(f"password authentication failed for {params.username}")
        self.db.open_connections += 1
        return FakeConnection(self.db)

    def _alter_user(self, conn, username: str, new_password: str, params: ConnectionParams) -> None:
        if self.db.fail_alter:
            raise RuntimeError("syntax error at or near ALTER")
        self.db.alters.append((params.username, username))
        self.db.users[username] = new_password


@pytest.fixture
def current_payload() -> SecretPayload:
    return SecretPayload(
        engine="postgres",
        host="db1",
        port=5432,
        username="app",
        password="old",
        dbname="app",
    )


@pytest.fixture
def store(current_payload: SecretPayload) -> MemoryBackend:
    """Memory store with CURRENT=V0 and rotation token T1 announced as PENDING."""
    backend = MemoryBackend()
    backend.seed(SECRET_ID, current_payload, token=CURRENT_TOKEN)
    backend.register_pending(SECRET_ID, TOKEN)
    return backend


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase({"app": "old"})


@pytest.fixture
def fake_engine(database: FakeDatabase) -> FakeEngine:
    return FakeEngine(database)


@pytest.fixture
def settings() -> RotationSettings:
    return RotationSettings(password_length=24, connect_timeout=5)


@pytest.fixture
def engine(store: MemoryBackend, settings: RotationSettings, fake_engine: FakeEngine) -> RotationEngine:
    def resolve(engine_name: str) -> FakeEngine:
        normalize_engine(engine_name)
        return fake_engine

    return RotationEngine(store, settings, engines=resolve)
