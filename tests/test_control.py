"""Tests for the load_attempts control table writer."""

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from fileset_loader.control import ControlTableWriter
from fileset_loader.models import BigQueryJobId, JobReference


@pytest.fixture
def writer(config):
    client = MagicMock()
    client.insert_rows_json.return_value = []
    return ControlTableWriter(replace(config, control_dataset="control"), client=client)


def test_writes_one_row_per_attempt(writer, request_two_files):
    ref = JobReference("test-project", BigQueryJobId("test-project", "job-4"))

    writer.log_load_attempt(request_two_files, ref, 1, "FAILURE", "retry")

    table_id, rows = writer.client.insert_rows_json.call_args.args
    assert table_id == "control.load_attempts"
    assert writer.client.insert_rows_json.call_args.kwargs["row_ids"] == ["job-4-1"]
    row = rows[0]
    assert row["job_id"] == "job-4"
    assert row["table_name"] == "events"
    assert row["attempt"] == 1
    assert row["status"] == "FAILURE"
    assert row["decision"] == "retry"
    assert row["file_count"] == 2
    assert row["files"] == request_two_files.uris


def test_insert_errors_do_not_fail_the_load(writer, request_two_files):
    ref = JobReference("test-project", BigQueryJobId("test-project", "job-4"))
    writer.client.insert_rows_json.side_effect = RuntimeError("table not found")

    writer.log_load_attempt(request_two_files, ref, 0, "SUCCESS", "finalize")

    writer.client.insert_rows_json.return_value = [{"index": 0, "errors": ["bad"]}]
    writer.client.insert_rows_json.side_effect = None
    writer.log_load_attempt(request_two_files, ref, 0, "SUCCESS", "finalize")
