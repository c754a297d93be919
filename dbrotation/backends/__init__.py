"""
dbrotation/backends/__init__.py — Abstract base class for secret stores.

The rotation engine keeps no state between steps: everything it knows about an
in-flight rotation is read back from the store's version → stage-label map.
AWS Secrets Manager implements this interface in production; the in-memory
store backs local dry runs and tests.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

from dbrotation.payload import SecretPayload

STAGE_CURRENT = "AWSCURRENT"
STAGE_PENDING = "AWSPENDING"
STAGE_PREVIOUS = "AWSPREVIOUS"


@dataclass(frozen=True)
class SecretDescription:
    """Rotation flag and version → stage labels map of one secret."""

    rotation_enabled: bool
    versions: dict[str, frozenset[str]] = field(default_factory=dict)

    def stages_of(self, token: str) -> frozenset[str]:
        return self.versions.get(token, frozenset())

    def tokens_with(self, stage: str) -> list[str]:
        return [token for token, stages in self.versions.items() if stage in stages]


class SecretStore(ABC):
    """Abstract interface for versioned secret storage."""

    @abstractmethod
    def describe(self, secret_id: str) -> SecretDescription:
        """
        Describe a secret's rotation configuration and versions.

        Args:
            secret_id: Secret name or ARN

        Returns:
            SecretDescription with the rotation flag and every version's labels.
        """
        ...

    @abstractmethod
    def get_version(
        self,
        secret_id: str,
        token: str | None = None,
        stage: str | None = None,
    ) -> SecretPayload | None:
        """
        Read one version of a secret, selected by token, stage label, or both.

        Returns:
            The parsed payload, or None if no version matches.
        """
        ...

    @abstractmethod
    def put_version(
        self,
        secret_id: str,
        token: str,
        payload: SecretPayload,
        stages: Iterable[str],
    ) -> None:
        """
        Store a new version under ``token`` with the given stage labels.

        Args:
            secret_id: Secret name or ARN
            token: Client request token that becomes the version id
            payload: Credential record to store
            stages: Stage labels to attach to the new version
        """
        ...

    @abstractmethod
    def move_stage_label(
        self,
        secret_id: str,
        label: str,
        to_token: str,
        from_token: str | None,
    ) -> None:
        """
        Atomically move ``label`` from ``from_token`` onto ``to_token``.

        Readers must observe the label on exactly one of the two versions at
        any moment, never on neither.
        """
        ...

    @abstractmethod
    def remove_stage_label(self, secret_id: str, label: str, from_token: str) -> None:
        """Detach ``label`` from a version without attaching it elsewhere."""
        ...

    @abstractmethod
    def write_audit_event(self, event: dict[str, Any]) -> None:
        """
        Record a structured audit event for a rotation step.

        Args:
            event: Dict with timestamp, action, actor, resource, result, metadata
        """
        ...
