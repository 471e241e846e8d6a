"""
fileset_loader - Retryable BigQuery load jobs for staged GCS file sets.

Drives one BigQuery load job per file set through three chained steps:
1. Trigger: submit the load job for the staged files
2. Poll: wait for the job to reach a terminal status
3. Resolve: clean up the staged files, resubmit, or give up

Usage:
    fileset-loader load.yaml

Environment Variables:
    PROJECT_ID: GCP project ID
    MAX_RETRIES: Load attempts per file set (default: 5)
    ARCHIVE_BUCKET: Move loaded files here instead of deleting them
    CONTROL_DATASET: Dataset holding the load_attempts audit table
"""

__version__ = "0.1.0"
