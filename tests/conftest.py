"""Shared fixtures: fast config, in-memory warehouse and staging store."""

import pytest
from google.cloud import bigquery

from fileset_loader.config import Config
from fileset_loader.errors import SubmissionError
from fileset_loader.models import BigQueryJobId, GcsFile, JobStatus, LoadRequest, TableSchema
from fileset_loader.pipeline import LoadServices
from fileset_loader.scheduler import InMemoryScheduler


class FakeWarehouse:
    """
    Records every submitted load job and replays scripted statuses.

    Each get_job_status call consumes the next scripted status; once the
    script runs out every job reports SUCCESS.
    """

    def __init__(self, statuses=None, submit_error: SubmissionError | None = None):
        self.statuses = list(statuses or [])
        self.submit_error = submit_error
        self.submitted = []
        self.polled = []

    def submit_load_job(self, description):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(description)
        return BigQueryJobId(
            project_id=description.project_id,
            job_id=f"job-{len(self.submitted)}",
            location="europe-west2",
        )

    def get_job_status(self, job):
        self.polled.append(job)
        if self.statuses:
            return self.statuses.pop(0)
        return JobStatus.SUCCESS


class FakeStagingStore:
    """Remembers which files were cleaned up."""

    def __init__(self):
        self.cleaned = []

    def cleanup(self, files):
        files = list(files)
        self.cleaned.extend(files)
        return len(files)


@pytest.fixture
def config() -> Config:
    return Config(
        env="test",
        project_id="test-project",
        bq_location="europe-west2",
        max_retries=3,
        default_queue="default",
        poll_initial_seconds=0.001,
        poll_max_seconds=0.001,
        poll_multiplier=1.0,
        poll_timeout_seconds=0.05,
        dynatrace_token_path="/nonexistent/dynatrace-token",
    )


@pytest.fixture
def schema() -> TableSchema:
    return TableSchema.from_fields([
        bigquery.SchemaField("event_id", "STRING", mode="REQUIRED"),
        bigquery.SchemaField("occurred_at", "TIMESTAMP"),
        bigquery.SchemaField("payload", "JSON"),
    ])


@pytest.fixture
def request_two_files(schema) -> LoadRequest:
    return LoadRequest(
        dataset="raw",
        table="events",
        project_id="test-project",
        files=(
            GcsFile("staging-bucket", "events/2024-01-15/part-000.json"),
            GcsFile("staging-bucket", "events/2024-01-15/part-001.json"),
        ),
        schema=schema,
    )


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def store() -> FakeStagingStore:
    return FakeStagingStore()


@pytest.fixture
def services(config, warehouse, store) -> LoadServices:
    return LoadServices(config=config, warehouse=warehouse, store=store)


@pytest.fixture
def scheduler(services) -> InMemoryScheduler:
    return InMemoryScheduler(services=services)
