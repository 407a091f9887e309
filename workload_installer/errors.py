from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .types import PackInfo


class WorkloadInstallerError(RuntimeError):
    """Base class for all installer failures.

    ``operation`` is set when the error escapes an orchestrated install so
    callers can inspect the terminal state of that operation.
    """

    operation: Any = None


class InstallerConfigError(WorkloadInstallerError, ValueError):
    pass


class UnsupportedInstallationUnit(WorkloadInstallerError):
    pass


class InstallLockError(WorkloadInstallerError):
    pass


class InstallFailure(WorkloadInstallerError):
    """Pack content could not be written."""

    def __init__(self, message: str, *, pack: Optional["PackInfo"] = None) -> None:
        super().__init__(message)
        self.pack = pack


class PackNotFound(InstallFailure):
    pass


class RecordWriteFailure(WorkloadInstallerError):
    pass


class ManifestInstallFailure(WorkloadInstallerError):
    pass


class RollbackFailure(WorkloadInstallerError):
    """Cleanup after a failed install could not complete.

    Fatal and not retryable: disk state may disagree with the record store.
    When raised by the orchestrator both the triggering error and the
    rollback error are attached.
    """

    def __init__(
        self,
        message: str,
        *,
        original_error: Optional[BaseException] = None,
        rollback_error: Optional[BaseException] = None,
    ) -> None:
        parts = [message]
        if original_error is not None:
            parts.append(f"install error: {original_error}")
        if rollback_error is not None:
            parts.append(f"rollback error: {rollback_error}")
        super().__init__("; ".join(parts))
        self.original_error = original_error
        self.rollback_error = rollback_error


class ManifestError(WorkloadInstallerError, ValueError):
    """A manifest document is malformed or inconsistent."""


class UnknownWorkload(WorkloadInstallerError, LookupError):
    pass
