"""
dbrotation/backends/memory_backend.py — In-process secret store.

This is the LOCAL RUN backend. It mirrors the Secrets Manager label rules
the rotation engine relies on:
  - a stage label is attached to at most one version at a time
  - moving AWSCURRENT attaches AWSPREVIOUS to the version it came from
  - a version id may be registered as AWSPENDING before it has a value,
    which is how the coordinator announces a new rotation token
"""
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from dbrotation.backends import (
    STAGE_CURRENT,
    STAGE_PENDING,
    STAGE_PREVIOUS,
    SecretDescription,
    SecretStore,
)
from dbrotation.errors import StageTransitionConflict
from dbrotation.payload import SecretPayload

log = logging.getLogger(__name__)


class _Secret:
    def __init__(self, rotation_enabled: bool) -> None:
        self.rotation_enabled = rotation_enabled
        self.stages: dict[str, set[str]] = {}
        self.values: dict[str, SecretPayload] = {}


class MemoryBackend(SecretStore):
    """Dict-backed store; one lock serialises every mutation."""

    def __init__(self) -> None:
        self._secrets: dict[str, _Secret] = {}
        self._lock = threading.Lock()
        self.audit_events: list[dict[str, Any]] = []

    def seed(
        self,
        secret_id: str,
        payload: SecretPayload,
        token: str | None = None,
        rotation_enabled: bool = True,
    ) -> str:
        """Create a secret whose only version holds AWSCURRENT. Returns the version id."""
        token = token or str(uuid.uuid4())
        secret = _Secret(rotation_enabled)
        secret.values[token] = payload
        secret.stages[token] = {STAGE_CURRENT}
        with self._lock:
            self._secrets[secret_id] = secret
        return token

    def register_pending(self, secret_id: str, token: str) -> None:
        """Announce a rotation token the way the coordinator does before createSecret."""
        with self._lock:
            secret = self._get(secret_id)
            self._attach(secret, STAGE_PENDING, token)

    def _get(self, secret_id: str) -> _Secret:
        try:
            return self._secrets[secret_id]
        except KeyError:
            raise RuntimeError(f"Secret not found: {secret_id}") from None

    @staticmethod
    def _attach(secret: _Secret, label: str, token: str) -> None:
        for stages in secret.stages.values():
            stages.discard(label)
        secret.stages.setdefault(token, set()).add(label)

    def describe(self, secret_id: str) -> SecretDescription:
        with self._lock:
            secret = self._get(secret_id)
            return SecretDescription(
                rotation_enabled=secret.rotation_enabled,
                versions={
                    token: frozenset(stages)
                    for token, stages in secret.stages.items()
                    if stages or token in secret.values
                },
            )

    def get_version(
        self,
        secret_id: str,
        token: str | None = None,
        stage: str | None = None,
    ) -> SecretPayload | None:
        with self._lock:
            secret = self._get(secret_id)
            for version, value in secret.values.items():
                if token is not None and version != token:
                    continue
                if stage is not None and stage not in secret.stages.get(version, set()):
                    continue
                if token is None and stage is None and STAGE_CURRENT not in secret.stages.get(version, set()):
                    continue
                return value
            return None

    def put_version(
        self,
        secret_id: str,
        token: str,
        payload: SecretPayload,
        stages: Iterable[str],
    ) -> None:
        with self._lock:
            secret = self._get(secret_id)
            existing = secret.values.get(token)
            if existing is not None:
                if existing.to_dict() != payload.to_dict():
                    raise RuntimeError(
                        f"Version {token} of {secret_id} already exists with a different value"
                    )
                return
            secret.values[token] = payload
            secret.stages.setdefault(token, set())
            for label in stages:
                self._attach(secret, label, token)

    def move_stage_label(
        self,
        secret_id: str,
        label: str,
        to_token: str,
        from_token: str | None,
    ) -> None:
        with self._lock:
            secret = self._get(secret_id)
            if to_token not in secret.values:
                raise StageTransitionConflict(f"Version {to_token} of {secret_id} has no value")
            holders = [t for t, stages in secret.stages.items() if label in stages]
            if holders and holders != [from_token]:
                raise StageTransitionConflict(
                    f"{label} of {secret_id} is on {holders}, expected {from_token}"
                )
            self._attach(secret, label, to_token)
            if label == STAGE_CURRENT and from_token and from_token != to_token:
                self._attach(secret, STAGE_PREVIOUS, from_token)
        log.info(f"Moved {label} of {secret_id} from {from_token} to {to_token}")

    def remove_stage_label(self, secret_id: str, label: str, from_token: str) -> None:
        with self._lock:
            secret = self._get(secret_id)
            secret.stages.get(from_token, set()).discard(label)

    def write_audit_event(self, event: dict[str, Any]) -> None:
        if "timestamp" not in event:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
        if "backend" not in event:
            event["backend"] = "memory"
        self.audit_events.append(event)
