"""Exception types raised by the harvester pipeline."""

from __future__ import annotations


class HarvesterError(RuntimeError):
    """Base class for pipeline failures."""


class QueryValidationError(ValueError):
    """Search parameters were rejected before any remote call."""


class ConfigurationError(HarvesterError):
    pass


class PreconditionError(HarvesterError):
    """A stage refused to start because its inputs are not in a usable state."""


class RemoteJobFailedError(HarvesterError):
    def __init__(self, job_name: str, status: str) -> None:
        super().__init__(f"Remote job '{job_name}' reported status {status}")
        self.job_name = job_name
        self.status = status


class PollTimeoutError(HarvesterError):
    pass


class PollCancelledError(HarvesterError):
    pass


class TransferError(HarvesterError):
    pass


class ArchiveMountError(HarvesterError):
    pass


class ExtractionError(HarvesterError):
    def __init__(self, folder_path: str, source_name: str, reason: str) -> None:
        super().__init__(
            f"Failed to extract '{source_name}' in folder '{folder_path}': {reason}"
        )
        self.folder_path = folder_path
        self.source_name = source_name


class StageError(HarvesterError):
    """Wraps the failure of one pipeline stage with the name it was working on."""

    def __init__(self, stage: str, name: str, cause: BaseException) -> None:
        super().__init__(f"Stage '{stage}' failed for '{name}': {cause}")
        self.stage = stage
        self.name = name
        self.cause = cause
