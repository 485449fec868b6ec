"""Exception hierarchy for pre-arch provisioning runs."""

from __future__ import annotations

from typing import Sequence


class ProvisioningError(Exception):
    """Base class for every fatal provisioning condition."""


class ValidationError(ProvisioningError):
    """Input rejected before any destructive action took place."""


class InvalidDevice(ValidationError):
    """The requested target is not a usable block device."""


class InsufficientDiskSpace(ValidationError):
    """The target device cannot hold the requested layout."""


class DeviceNodeMissing(ProvisioningError):
    """A stage was asked to operate on a device node that does not exist."""


class ToolInvocationError(ProvisioningError):
    """An external command exited with a non-zero status on a fatal path."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class LogicalVolumeCreationFailed(ToolInvocationError):
    """Creating the root or home logical volume failed."""


class RecognitionTimeout(ProvisioningError):
    """The kernel never reported the new partitions and the operator gave up."""


class RecoveryExhausted(ProvisioningError):
    """Every tier of a recovery ladder failed and the operator declined."""

    def __init__(self, message: str, *, operation: str, history: Sequence[tuple[str, str]] = ()) -> None:
        super().__init__(message)
        self.operation = operation
        self.history = tuple(history)


class PhysicalVolumeCreationFailed(RecoveryExhausted):
    pass


class VolumeGroupCreationFailed(RecoveryExhausted):
    pass
