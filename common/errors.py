"""
Error classes for the staging pipeline.

Components raise these; JobOrchestrator catches them once at its boundary
and classifies them into an ErrorKind on the returned outcome. Per-artifact
errors (fetch/persist) are recorded on the outcome and never escalate.
"""

from typing import Any, Optional


class StagingError(Exception):
    """Base exception for the staging pipeline."""
    pass


class ValidationError(StagingError):
    """A precondition failed before the job was submitted."""
    pass


class SubmissionError(StagingError):
    """The processing service could not be reached or rejected the job."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RemoteTerminalFailure(StagingError):
    """The status endpoint reported that the job failed."""

    def __init__(self, message: str, raw_payload: Any = None):
        super().__init__(message)
        self.raw_payload = raw_payload


class PollTimeoutError(StagingError):
    """The poll budget ran out without a terminal status."""

    def __init__(self, message: str, attempts: int = 0, raw_payload: Any = None):
        super().__init__(message)
        self.attempts = attempts
        self.raw_payload = raw_payload


class JobCancelledError(StagingError):
    """The caller's cancellation event fired while polling."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ArtifactFetchError(StagingError):
    pass


class ArtifactPersistError(StagingError):
    pass


class StorageError(StagingError):
    """Raised by the storage collaborator for misconfiguration or missing objects."""
    pass
