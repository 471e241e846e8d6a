"""Tests for the load job status poller."""

import pytest
from google.api_core import exceptions as gcp_exceptions

from fileset_loader.models import BigQueryJobId, JobReference, JobStatus
from fileset_loader.poller import JobStillRunning, StatusPoller, _should_poll_again, poll_retry


class ScriptedWarehouse:
    """Returns (or raises) the scripted results in order, repeating the last."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def submit_load_job(self, description):
        raise AssertionError("poller must never submit")

    def get_job_status(self, job):
        self.calls += 1
        result = self.results[0] if len(self.results) == 1 else self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def ref() -> JobReference:
    return JobReference("test-project", BigQueryJobId("test-project", "job-1"))


@pytest.fixture
def retry(config):
    return poll_retry(config)


class TestStatusPoller:
    """Tests for StatusPoller.poll."""

    @pytest.mark.parametrize("status", [JobStatus.SUCCESS, JobStatus.FAILURE])
    def test_terminal_status_returned_immediately(self, ref, retry, status):
        warehouse = ScriptedWarehouse(status)

        assert StatusPoller(warehouse, retry).poll(ref) is status
        assert warehouse.calls == 1

    def test_polls_until_job_finishes(self, ref, retry):
        warehouse = ScriptedWarehouse(
            JobStatus.RUNNING,
            JobStatus.RUNNING,
            JobStatus.SUCCESS,
        )

        assert StatusPoller(warehouse, retry).poll(ref) is JobStatus.SUCCESS
        assert warehouse.calls == 3

    def test_transient_errors_are_polled_through(self, ref, retry):
        warehouse = ScriptedWarehouse(
            gcp_exceptions.ServiceUnavailable("try later"),
            JobStatus.FAILURE,
        )

        assert StatusPoller(warehouse, retry).poll(ref) is JobStatus.FAILURE
        assert warehouse.calls == 2

    def test_deadline_reports_unresolved(self, ref, retry):
        warehouse = ScriptedWarehouse(JobStatus.RUNNING)

        assert StatusPoller(warehouse, retry).poll(ref) is JobStatus.UNRESOLVED
        assert warehouse.calls >= 1

    def test_permanent_api_error_reports_unresolved(self, ref, retry):
        warehouse = ScriptedWarehouse(gcp_exceptions.NotFound("no such job"))

        assert StatusPoller(warehouse, retry).poll(ref) is JobStatus.UNRESOLVED
        assert warehouse.calls == 1


class TestShouldPollAgain:
    """Tests for the polling retry predicate."""

    def test_running_job_is_retryable(self, ref):
        assert _should_poll_again(JobStillRunning(ref))

    def test_transient_error_is_retryable(self):
        assert _should_poll_again(gcp_exceptions.ServiceUnavailable("busy"))

    def test_not_found_is_not_retryable(self):
        assert not _should_poll_again(gcp_exceptions.NotFound("gone"))
