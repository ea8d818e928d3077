"""Core exceptions for datastore migration operations."""

from typing import Literal


class DatastoreMigratorError(Exception):
    """Base exception for datastore migration operations."""


class CommandError(DatastoreMigratorError):
    """External command execution failed."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ConfigurationError(DatastoreMigratorError):
    """Configuration validation or loading failed."""


class InvalidTransition(DatastoreMigratorError):
    """A migration record was moved along an edge the state machine does not allow."""


class TargetUnreachable(DatastoreMigratorError):
    """The consolidated target cannot be reached. Aborts the whole run."""

    reason = "TargetUnreachable"


class ServiceError(DatastoreMigratorError):
    """Failure scoped to a single service.

    ``reason`` is the taxonomy tag shown in the report and ``terminal`` is the
    state the service record ends in when the error escapes its pipeline.
    """

    reason: str = "ServiceError"
    terminal: Literal["failed", "skipped"] = "failed"


class CredentialMissing(ServiceError):
    reason = "CredentialMissing"
    terminal = "skipped"


class ContainerNotFound(ServiceError):
    reason = "ContainerNotFound"
    terminal = "skipped"


class AuthExhausted(ServiceError):
    reason = "AuthExhausted"


class DumpEmpty(ServiceError):
    reason = "DumpEmpty"


class DumpError(ServiceError):
    reason = "DumpError"


class ProvisionError(ServiceError):
    reason = "ProvisionError"


class RestoreError(ServiceError):
    reason = "RestoreError"


class ReadinessTimeout(ServiceError):
    reason = "ReadinessTimeout"


class VerificationFailed(ServiceError):
    reason = "VerificationFailed"


class ImportPartial(ServiceError):
    """Import exited with errors; verification decides the outcome."""

    reason = "ImportPartial"


class UnsupportedKeyType(ServiceError):
    """A key of a type the live exporter cannot serialize. Warning only."""

    reason = "UnsupportedKeyType"
