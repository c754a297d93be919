"""
dbrotation/payload.py — The credential record stored in each secret version.

The SecretString of a rotated secret is a JSON object:

    {"engine": "postgres", "host": "db1", "port": 5432,
     "username": "app", "password": "...", "dbname": "app"}

Oracle secrets may carry "sid" or "service_name" instead of "dbname".
Unknown keys are preserved across rotations.
"""
import json
import secrets
import string
from dataclasses import dataclass, field, replace
from typing import Any

from dbrotation.errors import UnsupportedEngine

ENGINE_ALIASES = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "oracle": "oracle",
}

DEFAULT_PORTS = {"postgres": 5432, "mysql": 3306, "oracle": 1521}

_KNOWN_KEYS = ("engine", "host", "port", "username", "password", "dbname", "sid", "service_name")

_LETTERS_AND_DIGITS = (string.ascii_lowercase, string.ascii_uppercase, string.digits)

COMPLEXITY_TIERS: dict[str, tuple[str, ...]] = {
    "low": _LETTERS_AND_DIGITS,
    "medium": _LETTERS_AND_DIGITS + ("!#$%^&*()-_=+",),
    "high": _LETTERS_AND_DIGITS + (string.punctuation,),
}


def normalize_engine(engine: str | None) -> str:
    """Map an engine field ("PostgreSQL", "mariadb", ...) to its engine kind."""
    kind = ENGINE_ALIASES.get((engine or "").strip().lower())
    if kind is None:
        raise UnsupportedEngine(f"Unsupported engine: {engine!r}")
    return kind


def generate_password(
    length: int,
    complexity: str = "high",
    exclude_characters: str = "",
) -> str:
    """
    Generate a random password from the OS CSPRNG.

    The password holds at least one character from every character class of
    the complexity tier; classes emptied by ``exclude_characters`` are skipped.
    """
    if complexity not in COMPLEXITY_TIERS:
        raise ValueError(f"Unknown password complexity: {complexity!r}")

    classes = [
        "".join(c for c in chars if c not in exclude_characters)
        for chars in COMPLEXITY_TIERS[complexity]
    ]
    classes = [chars for chars in classes if chars]
    if not classes:
        raise ValueError("Every password character is excluded")
    if length < len(classes):
        raise ValueError(f"Password length {length} is shorter than {len(classes)} required classes")

    alphabet = "".join(classes)
    chars = [secrets.choice(chars) for chars in classes]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


@dataclass(frozen=True)
class SecretPayload:
    engine: str
    host: str
    username: str
    password: str = field(repr=False)
    port: int | None = None
    dbname: str | None = None
    sid: str | None = None
    service_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def engine_kind(self) -> str:
        return normalize_engine(self.engine)

    @property
    def effective_port(self) -> int:
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS[self.engine_kind]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecretPayload":
        missing = [key for key in ("engine", "host", "username", "password") if not data.get(key)]
        if missing:
            raise ValueError(f"Secret is missing required fields: {', '.join(missing)}")

        port = data.get("port")
        return cls(
            engine=data["engine"],
            host=data["host"],
            username=data["username"],
            password=data["password"],
            port=int(port) if port not in (None, "") else None,
            dbname=data.get("dbname"),
            sid=data.get("sid"),
            service_name=data.get("service_name"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    @classmethod
    def from_json(cls, secret_string: str) -> "SecretPayload":
        try:
            data = json.loads(secret_string)
        except json.JSONDecodeError as e:
            raise ValueError(f"SecretString is not valid JSON: {e.msg}") from e
        if not isinstance(data, dict):
            raise ValueError("SecretString must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(engine=self.engine, host=self.host, username=self.username, password=self.password)
        for key in ("port", "dbname", "sid", "service_name"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def with_password(self, password: str) -> "SecretPayload":
        return replace(self, password=password, extra=dict(self.extra))

    def same_target(self, other: "SecretPayload") -> bool:
        """True when both payloads address the same account on the same database."""
        return (
            self.username == other.username
            and self.host == other.host
            and self.port == other.port
            and self.dbname == other.dbname
            and self.sid == other.sid
            and self.service_name == other.service_name
        )
