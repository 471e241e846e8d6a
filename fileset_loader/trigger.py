"""Build and submit BigQuery load jobs for a file set."""

import structlog
from google.cloud import bigquery

from fileset_loader.errors import SubmissionError
from fileset_loader.models import JobReference, LoadRequest
from fileset_loader.warehouse import LoadJobDescription, WarehouseClient

log = structlog.get_logger()


def build_load_job(request: LoadRequest) -> LoadJobDescription:
    """
    Create the load job for a request with the default load settings.

    Files are newline-delimited JSON appended to the destination table,
    with quoted newlines disallowed. The schema always comes from the
    request; nothing is autodetected.
    """
    job_config = bigquery.LoadJobConfig(
        allow_quoted_newlines=False,
        source_format=bigquery.SourceFormat.NEWLINE_DELIMITED_JSON,
        write_disposition=bigquery.WriteDisposition.WRITE_APPEND,
        schema=request.schema.fields,
    )

    destination = bigquery.TableReference(
        bigquery.DatasetReference(request.project_id, request.dataset),
        request.table,
    )

    return LoadJobDescription(
        project_id=request.project_id,
        destination=destination,
        source_uris=tuple(request.uris),
        job_config=job_config,
    )


class LoadTrigger:
    """Submits load jobs. Failures are raised, never retried here."""

    def __init__(self, warehouse: WarehouseClient) -> None:
        self.warehouse = warehouse

    def trigger(self, request: LoadRequest) -> JobReference:
        """Submit a new load job for the request and return its reference."""
        description = build_load_job(request)

        try:
            job = self.warehouse.submit_load_job(description)
        except SubmissionError:
            log.warning(
                "load_job_trigger_failed",
                table=f"{request.project_id}.{request.dataset}.{request.table}",
                files=request.uris,
            )
            raise

        log.info(
            "load_job_triggered",
            job_id=job.job_id,
            table=f"{request.project_id}.{request.dataset}.{request.table}",
            file_count=len(request.files),
        )
        return JobReference(project_id=request.project_id, job=job)
