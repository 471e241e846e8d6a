"""
Audit trail of load attempts in BigQuery.

Every resolved attempt, whether it finalized, retried or exhausted the
budget, becomes one row in <CONTROL_DATASET>.load_attempts. Rows are
streamed with an insert id of job id plus attempt, so a replayed
resolver step does not produce a duplicate row.
"""

from datetime import datetime, timezone

import structlog
from google.cloud import bigquery

from fileset_loader.config import Config
from fileset_loader.models import JobReference, LoadRequest

log = structlog.get_logger()

LOAD_ATTEMPTS_TABLE = "load_attempts"


class ControlTableWriter:
    """Writes one audit row per resolved load attempt."""

    def __init__(self, config: Config, client: bigquery.Client | None = None) -> None:
        self.config = config
        self.client = client or bigquery.Client(project=config.project_id, location=config.bq_location)
        self.dataset = config.control_dataset

    @property
    def table_id(self) -> str:
        return f"{self.dataset}.{LOAD_ATTEMPTS_TABLE}"

    def log_load_attempt(
        self,
        request: LoadRequest,
        job: JobReference,
        attempt: int,
        status: str,
        decision: str,
    ) -> None:
        """
        Record a resolved attempt.

        Audit failures never fail the load: they are logged and dropped.
        """
        row = {
            "logged_at": datetime.now(timezone.utc).isoformat(),
            "project_id": request.project_id,
            "dataset": request.dataset,
            "table_name": request.table,
            "job_id": job.job_id,
            "attempt": attempt,
            "status": status,
            "decision": decision,
            "file_count": len(request.files),
            "files": request.uris,
        }
        insert_id = f"{job.job_id}-{attempt}"

        try:
            errors = self.client.insert_rows_json(self.table_id, [row], row_ids=[insert_id])
        except Exception as e:
            log.error(
                "load_attempt_audit_failed",
                table=self.table_id,
                job_id=job.job_id,
                attempt=attempt,
                error=str(e),
            )
            return

        if errors:
            log.error(
                "load_attempt_audit_rejected",
                table=self.table_id,
                job_id=job.job_id,
                attempt=attempt,
                errors=errors,
            )
            return

        log.debug("load_attempt_audited", table=self.table_id, job_id=job.job_id, attempt=attempt)
