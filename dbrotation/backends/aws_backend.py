"""
dbrotation/backends/aws_backend.py — AWS Secrets Manager store using boto3.

This is the PRODUCTION backend.

Authentication: boto3 credential chain (Lambda execution role, SSO, env vars)
Versioning: AWSCURRENT / AWSPENDING / AWSPREVIOUS staging labels
Label moves: UpdateSecretVersionStage, which moves a label in one call
Audit: JSON lines to the function log, optionally to a file and CloudWatch Logs
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dbrotation.backends import SecretDescription, SecretStore
from dbrotation.errors import StageTransitionConflict
from dbrotation.payload import SecretPayload

log = logging.getLogger(__name__)

AUDIT_LOG_STREAM = "db-rotation"


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class AWSBackend(SecretStore):
    """
    AWS Secrets Manager backend.

    A new backend is built for every invocation, so a warm Lambda container
    never reuses a client across rotations.
    """

    def __init__(
        self,
        region: str | None = None,
        profile: str | None = None,
        audit_log_path: Path | None = None,
        audit_log_group: str | None = None,
        session: Any = None,
    ) -> None:
        if session is None:
            session_kwargs: dict[str, Any] = {}
            if region:
                session_kwargs["region_name"] = region
            if profile:
                session_kwargs["profile_name"] = profile
            session = boto3.Session(**session_kwargs)

        self._session = session
        self._sm = session.client("secretsmanager")
        self._audit_log_path = audit_log_path
        self._audit_log_group = audit_log_group
        self._logs: Any = None  # Lazy init for CloudWatch

    def describe(self, secret_id: str) -> SecretDescription:
        try:
            resp = self._sm.describe_secret(SecretId=secret_id)
        except ClientError as e:
            raise RuntimeError(f"Failed to describe secret {secret_id}: {e}") from e

        versions = {
            token: frozenset(stages)
            for token, stages in resp.get("VersionIdsToStages", {}).items()
        }
        return SecretDescription(
            rotation_enabled=bool(resp.get("RotationEnabled", False)),
            versions=versions,
        )

    def get_version(
        self,
        secret_id: str,
        token: str | None = None,
        stage: str | None = None,
    ) -> SecretPayload | None:
        kwargs: dict[str, Any] = {"SecretId": secret_id}
        if token:
            kwargs["VersionId"] = token
        if stage:
            kwargs["VersionStage"] = stage

        try:
            resp = self._sm.get_secret_value(**kwargs)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return None
            raise RuntimeError(f"Failed to get secret {secret_id}: {e}") from e
        return SecretPayload.from_json(resp["SecretString"])

    def put_version(
        self,
        secret_id: str,
        token: str,
        payload: SecretPayload,
        stages: Iterable[str],
    ) -> None:
        try:
            self._sm.put_secret_value(
                SecretId=secret_id,
                ClientRequestToken=token,
                SecretString=payload.to_json(),
                VersionStages=list(stages),
            )
        except ClientError as e:
            raise RuntimeError(f"Failed to put secret {secret_id} version {token}: {e}") from e

    def move_stage_label(
        self,
        secret_id: str,
        label: str,
        to_token: str,
        from_token: str | None,
    ) -> None:
        kwargs: dict[str, Any] = {
            "SecretId": secret_id,
            "VersionStage": label,
            "MoveToVersionId": to_token,
        }
        if from_token:
            kwargs["RemoveFromVersionId"] = from_token
        try:
            self._sm.update_secret_version_stage(**kwargs)
        except ClientError as e:
            raise StageTransitionConflict(
                f"Failed to move {label} of {secret_id} from {from_token} to {to_token}: {e}"
            ) from e
        log.info(f"Moved {label} of {secret_id} from {from_token} to {to_token}")

    def remove_stage_label(self, secret_id: str, label: str, from_token: str) -> None:
        try:
            self._sm.update_secret_version_stage(
                SecretId=secret_id,
                VersionStage=label,
                RemoveFromVersionId=from_token,
            )
        except ClientError as e:
            raise StageTransitionConflict(
                f"Failed to remove {label} from {secret_id} version {from_token}: {e}"
            ) from e

    def write_audit_event(self, event: dict[str, Any]) -> None:
        """Write audit event to the function log, the audit file and CloudWatch Logs."""
        if "timestamp" not in event:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
        if "backend" not in event:
            event["backend"] = "aws"

        line = json.dumps(event)
        log.info(line)

        if self._audit_log_path is not None:
            self._audit_log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._audit_log_path, "a") as f:
                f.write(line + "\n")

        if self._audit_log_group:
            self._write_to_cloudwatch(line)

    def _write_to_cloudwatch(self, message: str) -> None:
        """Push event to CloudWatch Logs (best-effort)."""
        try:
            if self._logs is None:
                self._logs = self._session.client("logs")
                try:
                    self._logs.create_log_stream(
                        logGroupName=self._audit_log_group,
                        logStreamName=AUDIT_LOG_STREAM,
                    )
                except ClientError as e:
                    if _error_code(e) != "ResourceAlreadyExistsException":
                        raise

            self._logs.put_log_events(
                logGroupName=self._audit_log_group,
                logStreamName=AUDIT_LOG_STREAM,
                logEvents=[
                    {
                        "timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
                        "message": message,
                    }
                ],
            )
        except (BotoCoreError, ClientError) as e:
            # CloudWatch failure should not abort rotation
            log.warning(f"CloudWatch audit write failed (non-fatal): {e}")
