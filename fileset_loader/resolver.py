"""Decide what happens after a load job finishes."""

from enum import Enum

from fileset_loader.errors import LoadJobFailure, UnresolvedStatus
from fileset_loader.models import JobReference, JobStatus


class Decision(str, Enum):
    FINALIZE = "finalize"    # Loaded: clean up the staged files
    RETRY = "retry"          # Resubmit the same request as a new attempt
    EXHAUSTED = "exhausted"  # Out of retries: fail, leave the files alone


def decide(status: JobStatus, attempt: int, max_retries: int) -> Decision:
    """
    Map a job status and attempt number to the next action.

    Attempts are zero-based. An attempt that is already at or past the
    budget is exhausted whatever the status says: the orchestrator should
    never have triggered it.
    """
    if attempt >= max_retries:
        return Decision.EXHAUSTED

    if status is JobStatus.SUCCESS:
        return Decision.FINALIZE

    # FAILURE and UNRESOLVED (and a RUNNING that slipped through) all
    # count against the budget the same way
    if attempt + 1 < max_retries:
        return Decision.RETRY

    return Decision.EXHAUSTED


def failure_for(ref: JobReference, status: JobStatus) -> LoadJobFailure:
    """Describe why a job did not succeed, for logs and error chaining."""
    if status is JobStatus.FAILURE:
        return LoadJobFailure(ref.job_id, status.value)
    return UnresolvedStatus(ref.job_id, status.value)
