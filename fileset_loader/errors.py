"""Error types for the file set loader.

Submission errors and an exhausted retry budget are fatal. Load job
failures and unresolved statuses are recovered by resubmitting the
whole file set until the retry budget runs out.
"""

from typing import Iterable


def _describe_files(files: Iterable) -> str:
    uris = [getattr(f, "uri", str(f)) for f in files]
    return "[" + ", ".join(uris) + "]"


class LoadPipelineError(Exception):
    """Base exception for the file set loader."""
    pass


class SubmissionError(LoadPipelineError):
    """BigQuery rejected or failed to accept a load request.

    Covers transport failures, auth failures, quota and malformed
    requests. Never retried: the current attempt fails immediately.
    """

    def __init__(self, message: str, files: Iterable = ()) -> None:
        self.files = tuple(files)
        super().__init__(message)


class RetryBudgetExhausted(LoadPipelineError):
    """A file set could not be loaded within the configured retries.

    The staged files are left in place for manual remediation.
    """

    def __init__(self, files: Iterable, attempts: int, max_retries: int) -> None:
        self.files = tuple(files)
        self.attempts = attempts
        self.max_retries = max_retries
        super().__init__(
            f"Unable to load the files into BigQuery = {_describe_files(self.files)} "
            f"after {attempts} of {max_retries} attempts. Check log for more details."
        )


class LoadJobFailure(LoadPipelineError):
    """BigQuery reports that a submitted load job failed."""

    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Load job {job_id} finished with status {status}")


class UnresolvedStatus(LoadJobFailure):
    """Polling stopped before the load job reached a terminal status."""
    pass


class SchedulerError(LoadPipelineError):
    """Base exception for task scheduling problems."""
    pass


class SlotAlreadyFilled(SchedulerError):
    """A single-assignment result slot was filled twice."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Result slot {handle} is already filled")


class UnknownStep(SchedulerError):
    """A persisted task names a step that is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No step registered under name '{name}'")
