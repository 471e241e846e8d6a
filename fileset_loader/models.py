"""
Value types passed between the load steps.

Everything here is immutable and converts to and from plain JSON-safe
dicts, because every value crossing a step boundary is persisted by the
scheduler and rebuilt on the other side.
"""

import copy
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from google.cloud import bigquery


@dataclass(frozen=True)
class GcsFile:
    """A staged file in Google Cloud Storage."""
    bucket: str        # Bucket name, without the gs:// scheme
    object_name: str   # Object path inside the bucket

    def __post_init__(self):
        if not self.bucket:
            raise ValueError("GcsFile bucket must not be empty")
        if not self.object_name:
            raise ValueError("GcsFile object_name must not be empty")

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.object_name}"

    @classmethod
    def from_uri(cls, uri: str) -> "GcsFile":
        """
        Parse a gs:// URI into a GcsFile.

        Example:
            "gs://my-bucket/staging/part-0.json" -> GcsFile("my-bucket", "staging/part-0.json")
        """
        if not uri.startswith("gs://"):
            raise ValueError(f"Not a GCS URI: {uri}")
        bucket, _, object_name = uri.removeprefix("gs://").partition("/")
        return cls(bucket=bucket, object_name=object_name)

    def to_dict(self) -> dict[str, str]:
        return {"bucket": self.bucket, "object": self.object_name}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "GcsFile":
        return cls(bucket=data["bucket"], object_name=data["object"])


class TableSchema:
    """
    Serialization-aware wrapper around a BigQuery table schema.

    SchemaField objects don't survive a trip through the scheduler, so the
    wrapper keeps the API representation and only rebuilds the SchemaField
    list when something asks for it.
    """

    def __init__(self, api_repr: Iterable[dict[str, Any]]):
        self._api_repr = copy.deepcopy(list(api_repr))
        self._fields: list[bigquery.SchemaField] | None = None

    @classmethod
    def from_fields(cls, fields: Iterable[bigquery.SchemaField]) -> "TableSchema":
        return cls([f.to_api_repr() for f in fields])

    @classmethod
    def from_api_repr(cls, api_repr: Iterable[dict[str, Any]]) -> "TableSchema":
        return cls(api_repr)

    @classmethod
    def from_spec(cls, spec: Iterable[dict[str, Any]]) -> "TableSchema":
        """
        Build a schema from a YAML-style field list.

        Each entry has a name and type, plus optional mode, description
        and nested fields (for RECORD columns):

            - name: event_id
              type: STRING
              mode: REQUIRED
        """
        return cls.from_fields(_field_from_spec(entry) for entry in spec)

    @property
    def fields(self) -> list[bigquery.SchemaField]:
        if self._fields is None:
            self._fields = [bigquery.SchemaField.from_api_repr(f) for f in self._api_repr]
        return self._fields

    def to_api_repr(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._api_repr)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableSchema):
            return NotImplemented
        return self._api_repr == other._api_repr

    def __hash__(self) -> int:
        return hash(json.dumps(self._api_repr, sort_keys=True))

    def __repr__(self) -> str:
        names = [f.get("name") for f in self._api_repr]
        return f"TableSchema({names})"


def _field_from_spec(entry: dict[str, Any]) -> bigquery.SchemaField:
    options: dict[str, Any] = {"mode": entry.get("mode", "NULLABLE").upper()}
    if entry.get("description"):
        options["description"] = entry["description"]
    if entry.get("fields"):
        options["fields"] = [_field_from_spec(sub) for sub in entry["fields"]]
    return bigquery.SchemaField(entry["name"], entry["type"].upper(), **options)


@dataclass(frozen=True)
class LoadRequest:
    """
    One load of a file set into a BigQuery table.

    Built once per orchestration and reused unchanged by every retry.
    """
    dataset: str
    table: str
    project_id: str
    files: tuple[GcsFile, ...]
    schema: TableSchema

    def __post_init__(self):
        for name in ("dataset", "table", "project_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"LoadRequest {name} must be a non-empty string")
        # Accept any iterable of files but always store a tuple
        object.__setattr__(self, "files", tuple(self.files))
        if not self.files:
            raise ValueError("LoadRequest needs at least one file")

    @property
    def uris(self) -> list[str]:
        return [f.uri for f in self.files]

    def to_params(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset,
            "table": self.table,
            "project_id": self.project_id,
            "files": [f.to_dict() for f in self.files],
            "schema": self.schema.to_api_repr(),
        }

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "LoadRequest":
        return cls(
            dataset=params["dataset"],
            table=params["table"],
            project_id=params["project_id"],
            files=tuple(GcsFile.from_dict(f) for f in params["files"]),
            schema=TableSchema.from_api_repr(params["schema"]),
        )


@dataclass(frozen=True)
class BigQueryJobId:
    """Job identity assigned by BigQuery; job ids are unique per project."""
    project_id: str
    job_id: str
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "job_id": self.job_id,
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BigQueryJobId":
        return cls(
            project_id=data["project_id"],
            job_id=data["job_id"],
            location=data.get("location"),
        )


@dataclass(frozen=True)
class JobReference:
    """Correlates one orchestration attempt with its BigQuery load job."""
    project_id: str
    job: BigQueryJobId

    @property
    def job_id(self) -> str:
        return self.job.job_id

    def to_dict(self) -> dict[str, Any]:
        return {"project_id": self.project_id, "job": self.job.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobReference":
        return cls(
            project_id=data["project_id"],
            job=BigQueryJobId.from_dict(data["job"]),
        )


class JobStatus(str, Enum):
    """Status of a BigQuery load job as seen by the poller."""
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNRESOLVED = "UNRESOLVED"  # Polling gave up before a terminal state

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass(frozen=True)
class LoadOutcome:
    """What a finished file set load resolves to."""
    status: JobStatus
    job: JobReference
    attempt: int
    files: tuple[GcsFile, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "job": self.job.to_dict(),
            "attempt": self.attempt,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoadOutcome":
        return cls(
            status=JobStatus(data["status"]),
            job=JobReference.from_dict(data["job"]),
            attempt=data["attempt"],
            files=tuple(GcsFile.from_dict(f) for f in data["files"]),
        )
