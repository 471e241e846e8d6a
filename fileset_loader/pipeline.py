"""
Load steps for one file set: trigger -> poll -> retry or clean up.

LoadFileSetStep is the entry point of every attempt. It refuses to run
once the retry budget is spent, submits the load job synchronously, then
schedules two continuations on its own queue:

    LoadFileSetStep(attempt)
        |-- PollLoadJobStep(job)                   fills `status`
        `-- RetryLoadOrCleanupStep(job, status, attempt)
                |-- SUCCESS          clean up staged files, done
                |-- retries left     LoadFileSetStep(attempt + 1)
                `-- budget spent     RetryBudgetExhausted

The resolver waits on both the job reference and the status slot. Its
output is chained back to the LoadFileSetStep output, so the promise
returned by start_load() resolves to the outcome of the last attempt.

Each retry is a full resubmission with the unchanged LoadRequest. Old
job references are dropped; nothing is resumed or deduplicated.
"""

from dataclasses import dataclass, replace
from typing import Any

import structlog
from google.api_core import retry as gcp_retry

from fileset_loader.config import Config
from fileset_loader.control import ControlTableWriter
from fileset_loader.errors import RetryBudgetExhausted, SubmissionError
from fileset_loader.metrics import MetricsClient
from fileset_loader.models import JobReference, JobStatus, LoadOutcome, LoadRequest
from fileset_loader.poller import StatusPoller, poll_retry
from fileset_loader.resolver import Decision, decide, failure_for
from fileset_loader.scheduler import Promise, Scheduler, Step, StepContext, register_step
from fileset_loader.storage import StagingStore
from fileset_loader.trigger import LoadTrigger
from fileset_loader.warehouse import WarehouseClient

log = structlog.get_logger()


@dataclass
class LoadServices:
    """Collaborators shared by the load steps."""
    config: Config
    warehouse: WarehouseClient
    store: StagingStore
    metrics: MetricsClient | None = None
    control: ControlTableWriter | None = None
    poll_retry: gcp_retry.Retry | None = None  # Defaults to the configured backoff

    def count(self, event: str, request: LoadRequest) -> None:
        if self.metrics is not None:
            self.metrics.load_event(event, request.dataset, request.table)


def _table_id(request: LoadRequest) -> str:
    return f"{request.project_id}.{request.dataset}.{request.table}"


@register_step
class LoadFileSetStep(Step):
    """Entry point of one load attempt for a file set."""

    name = "load_file_set"

    def __init__(self, request: LoadRequest) -> None:
        self.request = request

    def to_params(self) -> dict[str, Any]:
        return {"request": self.request.to_params()}

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "LoadFileSetStep":
        return cls(LoadRequest.from_params(params["request"]))

    def run(self, ctx: StepContext, attempt: int) -> Promise:
        services: LoadServices = ctx.services
        max_retries = services.config.max_retries

        # Never trigger a load that is already out of retries
        if attempt >= max_retries:
            log.error(
                "retry_budget_exhausted",
                table=_table_id(self.request),
                files=self.request.uris,
                attempt=attempt,
                max_retries=max_retries,
            )
            services.count("exhausted", self.request)
            raise RetryBudgetExhausted(self.request.files, attempt, max_retries)

        try:
            job = LoadTrigger(services.warehouse).trigger(self.request)
        except SubmissionError:
            services.count("submit_failed", self.request)
            raise

        services.count("triggered", self.request)

        queue = ctx.queue or services.config.default_queue
        status = ctx.scheduler.new_promise()

        ctx.scheduler.schedule(PollLoadJobStep(status.handle), job.to_dict(), queue=queue)

        return ctx.scheduler.schedule(
            RetryLoadOrCleanupStep(self.request),
            job.to_dict(),
            status,
            attempt,
            queue=queue,
        )


@register_step
class PollLoadJobStep(Step):
    """Waits for a load job and publishes its status to a result slot."""

    name = "poll_load_job"

    def __init__(self, status_handle: str) -> None:
        self.status_handle = status_handle

    def to_params(self) -> dict[str, Any]:
        return {"status_handle": self.status_handle}

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "PollLoadJobStep":
        return cls(params["status_handle"])

    def run(self, ctx: StepContext, job: dict[str, Any]) -> str:
        services: LoadServices = ctx.services
        retry = services.poll_retry or poll_retry(services.config)

        ref = JobReference.from_dict(job)

        # The resolver waits on the status slot, so it must always be filled
        try:
            status = StatusPoller(services.warehouse, retry).poll(ref)
        except Exception as e:
            log.exception("load_job_poll_crashed", job_id=ref.job_id, error=str(e))
            status = JobStatus.UNRESOLVED

        ctx.scheduler.fill(self.status_handle, status.value)
        return status.value


@register_step
class RetryLoadOrCleanupStep(Step):
    """Cleans up after a successful load, or resubmits, or gives up."""

    name = "retry_load_or_cleanup"

    def __init__(self, request: LoadRequest) -> None:
        self.request = request

    def to_params(self) -> dict[str, Any]:
        return {"request": self.request.to_params()}

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "RetryLoadOrCleanupStep":
        return cls(LoadRequest.from_params(params["request"]))

    def run(self, ctx: StepContext, job: dict[str, Any], status: str, attempt: int) -> Any:
        services: LoadServices = ctx.services
        max_retries = services.config.max_retries
        ref = JobReference.from_dict(job)
        job_status = JobStatus(status)

        decision = decide(job_status, attempt, max_retries)

        if services.control is not None:
            services.control.log_load_attempt(
                self.request, ref, attempt, job_status.value, decision.value
            )

        if decision is Decision.FINALIZE:
            cleaned = services.store.cleanup(self.request.files)
            services.count("succeeded", self.request)
            if services.metrics is not None:
                services.metrics.files_cleaned(cleaned, self.request.dataset, self.request.table)
            log.info(
                "load_succeeded",
                job_id=ref.job_id,
                table=_table_id(self.request),
                attempt=attempt,
                files_cleaned=cleaned,
            )
            return LoadOutcome(JobStatus.SUCCESS, ref, attempt, self.request.files).to_dict()

        cause = failure_for(ref, job_status) if job_status is not JobStatus.SUCCESS else None

        if decision is Decision.RETRY:
            log.warning(
                "load_retry_scheduled",
                job_id=ref.job_id,
                status=job_status.value,
                table=_table_id(self.request),
                attempt=attempt,
                next_attempt=attempt + 1,
                max_retries=max_retries,
            )
            services.count("retried", self.request)
            return ctx.scheduler.schedule(
                LoadFileSetStep(self.request),
                attempt + 1,
                queue=ctx.queue,
            )

        log.error(
            "retry_budget_exhausted",
            job_id=ref.job_id,
            status=job_status.value,
            table=_table_id(self.request),
            files=self.request.uris,
            attempt=attempt,
            max_retries=max_retries,
        )
        services.count("exhausted", self.request)
        raise RetryBudgetExhausted(self.request.files, attempt + 1, max_retries) from cause


def start_load(scheduler: Scheduler, request: LoadRequest, queue: str | None = None) -> Promise:
    """Start loading a file set; the promise resolves to a LoadOutcome dict."""
    return scheduler.schedule(LoadFileSetStep(request), 0, queue=queue)


def plan_file_sets(request: LoadRequest, max_files: int) -> list[LoadRequest]:
    """
    Split a request into requests of at most max_files files each.

    File order is preserved; every part keeps the same destination and
    schema.
    """
    if max_files < 1:
        raise ValueError(f"max_files must be at least 1, got {max_files}")

    files = request.files
    return [
        replace(request, files=files[i:i + max_files])
        for i in range(0, len(files), max_files)
    ]


def start_loads(
    scheduler: Scheduler,
    request: LoadRequest,
    max_files: int,
    queue: str | None = None,
) -> list[tuple[LoadRequest, Promise]]:
    """Start one independent load per planned file set."""
    file_sets = plan_file_sets(request, max_files)
    log.info(
        "file_sets_planned",
        table=_table_id(request),
        file_count=len(request.files),
        file_sets=len(file_sets),
    )
    return [(file_set, start_load(scheduler, file_set, queue=queue)) for file_set in file_sets]
