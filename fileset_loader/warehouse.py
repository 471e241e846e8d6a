"""
Warehouse client abstraction for the file set loader.

The load steps only need two operations from the warehouse: submit a
load job and ask for its status. The Protocol keeps the steps testable
without a BigQuery project; BigQueryWarehouse is the production backend.
"""

from dataclasses import dataclass
from typing import Protocol

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import bigquery

from fileset_loader.errors import SubmissionError
from fileset_loader.models import BigQueryJobId, JobStatus

log = structlog.get_logger()


@dataclass(frozen=True)
class LoadJobDescription:
    """A fully built load job, ready to submit."""
    project_id: str                        # Project that owns (and pays for) the job
    destination: bigquery.TableReference
    source_uris: tuple[str, ...]
    job_config: bigquery.LoadJobConfig


class WarehouseClient(Protocol):
    """
    Protocol defining the warehouse interface.

    - submit_load_job: Create a load job, raising SubmissionError on failure
    - get_job_status: Report where a previously submitted job is
    """

    def submit_load_job(self, description: LoadJobDescription) -> BigQueryJobId:
        """Submit a load job and return its provider-assigned id."""
        ...

    def get_job_status(self, job: BigQueryJobId) -> JobStatus:
        """Return RUNNING, SUCCESS or FAILURE for a submitted job."""
        ...


class BigQueryWarehouse:
    """
    BigQuery warehouse implementation.

    Every submit creates a brand new job. Jobs are never resumed or
    deduplicated, so calling submit twice loads the files twice.
    """

    def __init__(self, project: str, location: str, client: bigquery.Client | None = None):
        """
        Initialise the BigQuery client.

        Args:
            project: Default GCP project for API calls
            location: BigQuery location for jobs
            client: Pre-built client (tests inject a mock here)
        """
        self.client = client or bigquery.Client(project=project, location=location)
        self.location = location

    def submit_load_job(self, description: LoadJobDescription) -> BigQueryJobId:
        try:
            job = self.client.load_table_from_uri(
                list(description.source_uris),
                description.destination,
                job_config=description.job_config,
                project=description.project_id,
                location=self.location,
            )
        except (
            gcp_exceptions.GoogleAPICallError,
            gcp_exceptions.RetryError,
            auth_exceptions.GoogleAuthError,
        ) as e:
            raise SubmissionError(
                f"BigQuery rejected load job for {description.destination}: {e}",
                files=description.source_uris,
            ) from e

        return BigQueryJobId(
            project_id=job.project,
            job_id=job.job_id,
            location=job.location,
        )

    def get_job_status(self, job: BigQueryJobId) -> JobStatus:
        bq_job = self.client.get_job(
            job.job_id,
            project=job.project_id,
            location=job.location or self.location,
        )

        if bq_job.state != "DONE":
            return JobStatus.RUNNING

        if bq_job.error_result:
            log.warning(
                "load_job_errors",
                job_id=job.job_id,
                error_result=bq_job.error_result,
                errors=(bq_job.errors or [])[:10],
            )
            return JobStatus.FAILURE

        return JobStatus.SUCCESS
