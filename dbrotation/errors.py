"""
dbrotation/errors.py — Error taxonomy for the rotation steps.

Every error carries a ``retryable`` flag so the rotation coordinator (or the
CLI acting as one) can decide whether re-invoking the same step with the same
token makes sense.
"""


class RotationError(Exception):
    """Base class for all rotation failures surfaced to the caller."""

    retryable = False


class InvalidRotationState(RotationError):
    """Rotation disabled, unknown token, or token not staged as pending."""


class UnsupportedEngine(RotationError):
    """The secret's engine field names a database we cannot rotate."""


class UnsupportedCredentials(RotationError):
    """The engine's dialect cannot express the username or password."""


class DatabaseConnectionFailed(RotationError):
    """Could not open a connection to the target database."""

    retryable = True


class DatabaseStatementFailed(RotationError):
    """Connected, but the password change statement failed."""

    retryable = True


class CredentialValidationFailed(RotationError):
    """The pending credentials could not log in to the target database."""

    retryable = True


class StageTransitionConflict(RotationError):
    """finishSecret found the stage labels in an unexpected state."""

    retryable = True
