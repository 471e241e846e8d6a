"""
Poll a submitted load job until it reaches a terminal status.

Backoff between polls is handled by google.api_core's Retry: a RUNNING
job is reported as a retryable exception, alongside transient API
errors. When the retry deadline passes the job is reported UNRESOLVED
rather than raising, so the poller always produces exactly one status.
"""

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.api_core import retry as gcp_retry
from google.auth import exceptions as auth_exceptions

from fileset_loader.config import Config
from fileset_loader.models import JobReference, JobStatus
from fileset_loader.warehouse import WarehouseClient

log = structlog.get_logger()


class JobStillRunning(Exception):
    """Raised inside the retry loop while the job has not finished."""

    def __init__(self, ref: JobReference) -> None:
        self.ref = ref
        super().__init__(f"Load job {ref.job_id} is still running")


def _should_poll_again(exc: Exception) -> bool:
    return isinstance(exc, JobStillRunning) or gcp_retry.if_transient_error(exc)


def poll_retry(config: Config) -> gcp_retry.Retry:
    """Build the polling backoff policy from configuration."""
    return gcp_retry.Retry(
        predicate=_should_poll_again,
        initial=config.poll_initial_seconds,
        maximum=config.poll_max_seconds,
        multiplier=config.poll_multiplier,
        deadline=config.poll_timeout_seconds,
    )


class StatusPoller:
    """Waits for a load job to finish."""

    def __init__(self, warehouse: WarehouseClient, retry: gcp_retry.Retry) -> None:
        self.warehouse = warehouse
        self.retry = retry

    def poll(self, ref: JobReference) -> JobStatus:
        """Block until the job is SUCCESS or FAILURE, or polling gives up."""

        def check() -> JobStatus:
            status = self.warehouse.get_job_status(ref.job)
            if status is JobStatus.RUNNING:
                raise JobStillRunning(ref)
            return status

        try:
            status = self.retry(check)()
        except gcp_exceptions.RetryError as e:
            log.warning(
                "load_job_poll_timed_out",
                job_id=ref.job_id,
                cause=str(e.cause) if e.cause else None,
            )
            return JobStatus.UNRESOLVED
        except (gcp_exceptions.GoogleAPICallError, auth_exceptions.GoogleAuthError) as e:
            log.error(
                "load_job_poll_failed",
                job_id=ref.job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return JobStatus.UNRESOLVED

        log.info("load_job_status_resolved", job_id=ref.job_id, status=status.value)
        return status
