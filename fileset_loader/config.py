"""
Configuration management for the file set loader.

This module handles:
- Loading environment variables into a typed Config dataclass
- Loading a YAML load definition into a LoadRequest
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from fileset_loader.models import GcsFile, LoadRequest, TableSchema


@dataclass(frozen=True)
class Config:
    """Loader configuration."""

    # Environment
    env: str
    project_id: str
    bq_location: str

    # Retry budget and scheduling
    max_retries: int            # Load attempts per file set before giving up
    default_queue: str          # Queue used when the caller doesn't pick one

    # Status polling backoff
    poll_initial_seconds: float
    poll_max_seconds: float
    poll_multiplier: float
    poll_timeout_seconds: float  # Give up and report UNRESOLVED after this long

    # File set planning (BigQuery accepts at most 10,000 URIs per load job)
    max_files_per_job: int = 10000

    # Cleanup: archive loaded files here, or delete them when unset
    archive_bucket: str | None = None

    # Audit: dataset holding load_attempts, disabled when unset
    control_dataset: str | None = None

    # Metrics
    dynatrace_endpoint: str = ""
    dynatrace_token_path: str = "/secrets/dynatrace-token"

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.max_files_per_job < 1:
            raise ValueError(f"max_files_per_job must be at least 1, got {self.max_files_per_job}")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Required:
            PROJECT_ID: GCP project ID owning the load jobs

        Optional:
            ENV: Environment name (default: int)
            BQ_LOCATION: BigQuery location (default: europe-west2)
            MAX_RETRIES: Load attempts per file set (default: 5)
            DEFAULT_QUEUE: Queue name (default: default)
            POLL_INITIAL_SECONDS / POLL_MAX_SECONDS / POLL_MULTIPLIER: Backoff
            POLL_TIMEOUT_SECONDS: Polling deadline (default: 3600)
            MAX_FILES_PER_JOB: Files per load job (default: 10000)
            ARCHIVE_BUCKET: Archive loaded files instead of deleting them
            CONTROL_DATASET: Dataset for the load_attempts audit table
            DYNATRACE_ENDPOINT / DYNATRACE_TOKEN_PATH: Metrics push
        """
        return cls(
            env=os.environ.get("ENV", "int"),
            project_id=os.environ["PROJECT_ID"],
            bq_location=os.environ.get("BQ_LOCATION", "europe-west2"),

            max_retries=int(os.environ.get("MAX_RETRIES", "5")),
            default_queue=os.environ.get("DEFAULT_QUEUE", "default"),

            poll_initial_seconds=float(os.environ.get("POLL_INITIAL_SECONDS", "1.0")),
            poll_max_seconds=float(os.environ.get("POLL_MAX_SECONDS", "60.0")),
            poll_multiplier=float(os.environ.get("POLL_MULTIPLIER", "2.0")),
            poll_timeout_seconds=float(os.environ.get("POLL_TIMEOUT_SECONDS", "3600.0")),

            max_files_per_job=int(os.environ.get("MAX_FILES_PER_JOB", "10000")),
            archive_bucket=os.environ.get("ARCHIVE_BUCKET") or None,
            control_dataset=os.environ.get("CONTROL_DATASET") or None,

            dynatrace_endpoint=os.environ.get("DYNATRACE_ENDPOINT", ""),
            dynatrace_token_path=os.environ.get("DYNATRACE_TOKEN_PATH", "/secrets/dynatrace-token"),
        )


def load_definition(path: str, default_project: str) -> LoadRequest:
    """
    Load a file set load definition from a YAML file.

    Args:
        path: Path to the YAML definition
        default_project: Project used when the definition doesn't name one

    Returns:
        LoadRequest covering every file in the definition

    Raises:
        ValueError: If the definition is empty or missing required keys

    Example YAML:

        dataset: raw
        table: events
        project: analytics-prod        # optional
        files:
          - gs://landing/events/part-000.json
          - bucket: landing
            object: events/part-001.json
        schema:
          - name: event_id
            type: STRING
            mode: REQUIRED
          - name: payload
            type: JSON
    """
    raw = yaml.safe_load(Path(path).read_text())

    if not raw:
        raise ValueError(f"Load definition {path} is empty")

    if not isinstance(raw, dict):
        raise ValueError(f"Load definition {path} must be a mapping, got {type(raw).__name__}")

    missing = [key for key in ("dataset", "table", "files", "schema") if key not in raw]
    if missing:
        raise ValueError(f"Load definition {path} is missing: {', '.join(missing)}")

    return LoadRequest(
        dataset=raw["dataset"],
        table=raw["table"],
        project_id=raw.get("project") or default_project,
        files=tuple(_parse_file(entry) for entry in raw["files"]),
        schema=TableSchema.from_spec(raw["schema"]),
    )


def _parse_file(entry: Any) -> GcsFile:
    # Simple format: a gs:// URI string
    if isinstance(entry, str):
        return GcsFile.from_uri(entry)
    return GcsFile(bucket=entry["bucket"], object_name=entry["object"])
