"""
Staged file cleanup for the file set loader.

Once a file set has been loaded its staged files are no longer needed.
They are either deleted or moved to an archive bucket under a dated
prefix, depending on configuration. Files of a set that failed to load
are never touched.
"""

from datetime import datetime, timezone
from typing import Iterable, Protocol

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.api_core import retry as gcp_retry
from google.cloud import storage

from fileset_loader.models import GcsFile

log = structlog.get_logger()

# Retry configuration for GCS operations
GCS_RETRY = gcp_retry.Retry(
    predicate=gcp_retry.if_transient_error,
    initial=1.0,
    maximum=60.0,
    multiplier=2.0,
    deadline=300.0,
)


class StagingStore(Protocol):
    """
    Protocol defining the staging store interface.

    - cleanup: Release the staged files of a successfully loaded set,
      returning how many files were cleaned up
    """

    def cleanup(self, files: Iterable[GcsFile]) -> int:
        """Delete or archive the given staged files."""
        ...


class GCSStagingStore:
    """
    Google Cloud Storage implementation.

    GCS has no native move, so archiving copies each blob to the archive
    bucket and then deletes the original.
    """

    def __init__(self, archive_bucket: str | None = None, client: storage.Client | None = None):
        """
        Initialise the GCS client.

        Args:
            archive_bucket: Archive loaded files here; delete them when None
            client: Pre-built client (tests inject a mock here)
        """
        self.client = client or storage.Client()
        self.archive_bucket = archive_bucket

    def cleanup(self, files: Iterable[GcsFile]) -> int:
        now = datetime.now(timezone.utc)
        # archive/YYYY-MM-DD/HHMM/
        archive_prefix = f"{now.strftime('%Y-%m-%d')}/{now.strftime('%H%M')}/"

        cleaned = 0
        for file in files:
            blob = self.client.bucket(file.bucket).blob(file.object_name)
            try:
                if self.archive_bucket:
                    dest_name = f"{archive_prefix}{file.object_name}"
                    self.client.bucket(file.bucket).copy_blob(
                        blob,
                        self.client.bucket(self.archive_bucket),
                        dest_name,
                        retry=GCS_RETRY,
                    )
                    log.debug(
                        "staged_file_archived",
                        source=file.uri,
                        destination=f"gs://{self.archive_bucket}/{dest_name}",
                    )
                blob.delete(retry=GCS_RETRY)
            except gcp_exceptions.NotFound:
                # Already gone, e.g. cleaned up by an earlier run
                log.warning("staged_file_missing", file=file.uri)
                continue

            cleaned += 1

        log.info(
            "staged_files_cleaned",
            files_cleaned=cleaned,
            archived=bool(self.archive_bucket),
        )
        return cleaned
