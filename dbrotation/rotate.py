#!/usr/bin/env python3
"""
rotate.py — Database password rotation for Secrets Manager secrets.

Secrets Manager drives a rotation by invoking the function once per step with
the same ClientRequestToken:

    createSecret   stage a new password under the token as AWSPENDING
    setSecret      ALTER USER on the database, logged in with AWSCURRENT
    testSecret     log in with the AWSPENDING credentials
    finishSecret   move AWSCURRENT onto the token

Every step is safe to replay: progress lives only in the secret's version
stages, so a step re-invoked after a timeout picks up where the last one left.

Usage (resume or replay a rotation, this script acting as the coordinator):
    python -m dbrotation.rotate --secret-id prod/app/db --step all
    python -m dbrotation.rotate --secret-id prod/app/db --step finishSecret --token <id>
    python -m dbrotation.rotate --secret-id demo --step all --backend memory --seed-file secret.json

Environment variables:
    see dbrotation/config.py; LOG_LEVEL sets the Lambda log level (default: INFO)
"""
import argparse
import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from dbrotation.backends import STAGE_CURRENT, STAGE_PENDING, SecretStore
from dbrotation.config import RotationSettings
from dbrotation.engines import ConnectionParams, DatabaseEngine, get_engine
from dbrotation.errors import (
    CredentialValidationFailed,
    DatabaseConnectionFailed,
    DatabaseStatementFailed,
    InvalidRotationState,
    RotationError,
    StageTransitionConflict,
)
from dbrotation.payload import SecretPayload, generate_password

log = logging.getLogger("dbrotation.rotation")

STEPS = ("createSecret", "setSecret", "testSecret", "finishSecret")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_event(action: str, secret_id: str, result: str, metadata: dict | None = None) -> dict:
    return {
        "timestamp": utcnow(),
        "action": action,
        "actor": "rotation-function",
        "resource": secret_id,
        "result": result,
        "metadata": metadata or {},
    }


class RotationEngine:
    """
    Executes one step of the rotation protocol against a secret store.

    The engine holds no state between calls. ``engines`` resolves a secret's
    engine field to a DatabaseEngine; it defaults to the built-in registry.
    """

    def __init__(
        self,
        store: SecretStore,
        settings: RotationSettings | None = None,
        engines: Callable[[str], DatabaseEngine] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or RotationSettings()
        self.engines = engines or get_engine
        self._handlers = {
            "createSecret": self.create_secret,
            "setSecret": self.set_secret,
            "testSecret": self.test_secret,
            "finishSecret": self.finish_secret,
        }

    def handle_rotation_step(self, secret_id: str, token: str, step: str) -> None:
        handler = self._handlers.get(step)
        if handler is None:
            raise InvalidRotationState(f"Unknown step: {step}")

        description = self.store.describe(secret_id)
        if not description.rotation_enabled:
            raise InvalidRotationState(f"Rotation is not enabled for {secret_id}")
        if token not in description.versions:
            raise InvalidRotationState(f"Version {token} has no stage for rotation of {secret_id}")

        stages = description.stages_of(token)
        if step == "finishSecret" and STAGE_CURRENT in stages and STAGE_PENDING not in stages:
            log.info(f"{step}: version {token} is already {STAGE_CURRENT} for {secret_id}")
            self.store.write_audit_event(make_event(
                "rotation_step_skipped", secret_id, "success",
                {"step": step, "token": token, "reason": "already_current"},
            ))
            return
        if STAGE_PENDING not in stages:
            raise InvalidRotationState(
                f"Version {token} not set as {STAGE_PENDING} for rotation of {secret_id}"
            )

        log.info(f"{step}: starting for {secret_id} version {token}")
        self.store.write_audit_event(make_event(
            "rotation_step_started", secret_id, "success", {"step": step, "token": token},
        ))
        try:
            handler(secret_id, token)
        except Exception as e:
            log.error(f"{step} failed for {secret_id} version {token}: {e}")
            try:
                self.store.write_audit_event(make_event(
                    "rotation_step_failed", secret_id, "failure",
                    {
                        "step": step,
                        "token": token,
                        "error": type(e).__name__,
                        "retryable": getattr(e, "retryable", False),
                    },
                ))
            except Exception as audit_error:
                # The step's own error is the one the caller must see.
                log.exception(f"Audit write failed after {step} failure: {audit_error}")
            raise

        self.store.write_audit_event(make_event(
            "rotation_step_succeeded", secret_id, "success", {"step": step, "token": token},
        ))
        log.info(f"{step}: done for {secret_id} version {token}")

    # ----------------------------------------------------------
    # Steps
    # ----------------------------------------------------------

    def create_secret(self, secret_id: str, token: str) -> None:
        """Stage a copy of AWSCURRENT with a new password under the token."""
        current = self._require_version(secret_id, stage=STAGE_CURRENT)

        if self.store.get_version(secret_id, token=token, stage=STAGE_PENDING) is not None:
            log.info(f"createSecret: {STAGE_PENDING} already exists for {secret_id} version {token}")
            return

        password = generate_password(
            self.settings.password_length,
            self.settings.password_complexity,
            self.settings.exclude_characters,
        )
        # A staged password is never regenerated, so it must suit the dialect now.
        self.engines(current.engine).validate_password_change(current.username, password)
        self.store.put_version(secret_id, token, current.with_password(password), [STAGE_PENDING])
        log.info(f"createSecret: stored new {STAGE_PENDING} version {token} for {secret_id}")

    def set_secret(self, secret_id: str, token: str) -> None:
        """Apply the pending password on the database, logged in as AWSCURRENT."""
        pending = self._require_version(secret_id, token=token, stage=STAGE_PENDING)
        current = self._require_version(secret_id, stage=STAGE_CURRENT)

        if not pending.same_target(current):
            raise InvalidRotationState(
                f"{STAGE_PENDING} version {token} of {secret_id} does not address the same "
                f"user and database as {STAGE_CURRENT}"
            )

        engine = self.engines(current.engine)
        timeout = self.settings.connect_timeout

        # Replay of an attempt that already changed the password.
        try:
            engine.check_connection(ConnectionParams.from_payload(pending), timeout)
        except (DatabaseConnectionFailed, DatabaseStatementFailed) as e:
            log.info(f"setSecret: {STAGE_PENDING} credentials not active yet ({type(e).__name__})")
        else:
            log.info(f"setSecret: {STAGE_PENDING} credentials already work for {secret_id}")
            return

        engine.change_password(
            ConnectionParams.from_payload(current),
            pending.username,
            pending.password,
            timeout,
        )
        log.info(f"setSecret: password changed for {pending.username} on {current.host}")

    def test_secret(self, secret_id: str, token: str) -> None:
        """Log in with the pending credentials."""
        pending = self._require_version(secret_id, token=token, stage=STAGE_PENDING)
        engine = self.engines(pending.engine)
        try:
            engine.check_connection(
                ConnectionParams.from_payload(pending), self.settings.connect_timeout
            )
        except (DatabaseConnectionFailed, DatabaseStatementFailed) as e:
            raise CredentialValidationFailed(
                f"{STAGE_PENDING} credentials of {secret_id} version {token} do not work: {e}"
            ) from e
        log.info(f"testSecret: {STAGE_PENDING} credentials work for {secret_id}")

    def finish_secret(self, secret_id: str, token: str) -> None:
        """Move AWSCURRENT onto the token, then drop AWSPENDING from it."""
        description = self.store.describe(secret_id)
        holders = description.tokens_with(STAGE_CURRENT)
        if token in holders:
            # An earlier attempt moved the label but stopped before this.
            self.store.remove_stage_label(secret_id, STAGE_PENDING, token)
            log.info(f"finishSecret: version {token} is already {STAGE_CURRENT} for {secret_id}")
            return
        if len(holders) != 1:
            raise StageTransitionConflict(
                f"Expected one {STAGE_CURRENT} version of {secret_id}, found {holders}"
            )

        self.store.move_stage_label(secret_id, STAGE_CURRENT, token, holders[0])

        confirmed = self.store.describe(secret_id).tokens_with(STAGE_CURRENT)
        if confirmed != [token]:
            raise StageTransitionConflict(
                f"{STAGE_CURRENT} of {secret_id} is on {confirmed} after moving it to {token}"
            )
        self.store.remove_stage_label(secret_id, STAGE_PENDING, token)
        log.info(f"finishSecret: moved {STAGE_CURRENT} to {token} (was {holders[0]}) for {secret_id}")

    def _require_version(
        self,
        secret_id: str,
        token: str | None = None,
        stage: str | None = None,
    ) -> SecretPayload:
        payload = self.store.get_version(secret_id, token=token, stage=stage)
        if payload is None:
            raise InvalidRotationState(
                f"No version of {secret_id} with token={token} stage={stage}"
            )
        return payload


# ============================================================
# Lambda entry point
# ============================================================

def lambda_handler(event: dict[str, Any], context: Any) -> None:
    """Secrets Manager rotation entry point: one step per invocation."""
    logging.getLogger().setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    try:
        secret_id = event["SecretId"]
        token = event["ClientRequestToken"]
        step = event["Step"]
    except KeyError as e:
        raise InvalidRotationState(f"Missing required event parameter: {e}") from e

    settings = RotationSettings.from_env()
    from dbrotation.backends.aws_backend import AWSBackend

    store = AWSBackend(
        region=settings.region,
        audit_log_path=settings.audit_log_path,
        audit_log_group=settings.audit_log_group,
    )
    RotationEngine(store, settings).handle_rotation_step(secret_id, token, step)


# ============================================================
# CLI: this process acts as the rotation coordinator
# ============================================================

def run_step_with_retries(
    engine: RotationEngine,
    secret_id: str,
    token: str,
    step: str,
    max_retries: int,
) -> None:
    """Invoke one step, re-invoking it with the same token on retryable errors."""
    attempt = 0
    while True:
        try:
            engine.handle_rotation_step(secret_id, token, step)
            return
        except RotationError as e:
            if not e.retryable or attempt >= max_retries:
                raise
            attempt += 1
            log.warning(f"{step} failed ({type(e).__name__}); retry {attempt}/{max_retries}")


def find_pending_token(store: SecretStore, secret_id: str) -> str | None:
    """Return the token of an in-flight rotation (AWSPENDING but not AWSCURRENT)."""
    description = store.describe(secret_id)
    for token in description.tokens_with(STAGE_PENDING):
        if STAGE_CURRENT not in description.stages_of(token):
            return token
    return None


def get_backend(
    backend_name: str,
    settings: RotationSettings,
    profile: str | None = None,
    region: str | None = None,
) -> SecretStore:
    if backend_name == "aws":
        from dbrotation.backends.aws_backend import AWSBackend
        return AWSBackend(
            region=region or settings.region,
            profile=profile,
            audit_log_path=settings.audit_log_path,
            audit_log_group=settings.audit_log_group,
        )
    elif backend_name == "memory":
        from dbrotation.backends.memory_backend import MemoryBackend
        return MemoryBackend()
    raise ValueError(f"Unknown backend: {backend_name}. Use 'aws' or 'memory'.")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Rotate a database password stored in a secret",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m dbrotation.rotate --secret-id prod/app/db --step all
  python -m dbrotation.rotate --secret-id prod/app/db --step testSecret --token 3f1c...
  python -m dbrotation.rotate --secret-id demo --step all --backend memory --seed-file secret.json
        """,
    )
    parser.add_argument("--secret-id", required=True, help="Secret name or ARN")
    parser.add_argument(
        "--step",
        choices=[*STEPS, "all"],
        default="all",
        help="Rotation step to run, or 'all' for the full sequence (default: all)",
    )
    parser.add_argument("--token", help="Client request token (default: the in-flight rotation for aws, a new UUID for memory)")
    parser.add_argument(
        "--backend",
        choices=["aws", "memory"],
        default="aws",
        help="Secret store (default: aws)",
    )
    parser.add_argument("--profile", help="AWS profile name (for --backend aws)")
    parser.add_argument("--region", help="AWS region (for --backend aws, default: AWS_REGION)")
    parser.add_argument(
        "--seed-file",
        type=Path,
        help="JSON secret used as the initial AWSCURRENT value (for --backend memory)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    if args.backend == "memory" and args.seed_file is None:
        parser.error("--seed-file is required with --backend memory")

    steps = list(STEPS) if args.step == "all" else [args.step]
    try:
        settings = RotationSettings.from_env()
        store = get_backend(args.backend, settings, profile=args.profile, region=args.region)

        if args.backend == "memory":
            payload = SecretPayload.from_dict(json.loads(args.seed_file.read_text()))
            token = args.token or str(uuid.uuid4())
            store.seed(args.secret_id, payload)
            store.register_pending(args.secret_id, token)
        else:
            token = args.token or find_pending_token(store, args.secret_id)
            if token is None:
                parser.error(
                    f"No rotation in flight for {args.secret_id}; start one with "
                    f"'aws secretsmanager rotate-secret' or pass --token"
                )

        engine = RotationEngine(store, settings)
        log.info(f"Rotating {args.secret_id} with token {token} ({', '.join(steps)})")
        for step in steps:
            run_step_with_retries(engine, args.secret_id, token, step, settings.max_retry_count)
    except RotationError as e:
        log.error(f"Rotation of {args.secret_id} failed: {type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        log.exception(f"Rotation of {args.secret_id} failed: {e}")
        sys.exit(1)

    log.info(f"[OK] {', '.join(steps)} completed for {args.secret_id}")


if __name__ == "__main__":
    main()
