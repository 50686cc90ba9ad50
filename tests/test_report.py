"""
Tests for sync reports and failure classification.
"""

import pytest

from person_sync.exceptions import StorageIOError, TransportError, TransportErrorCategory
from person_sync.sync.report import (
    FailureKind,
    ResyncReport,
    SyncFailure,
    SyncReport,
    classify_exception,
    rejected_reason,
)


def _failure(local_id: int = 1, reason: str = "Request timeout") -> SyncFailure:
    return SyncFailure(local_id, "Ana Lima", FailureKind.TRANSIENT, reason)


class TestClassification:
    @pytest.mark.parametrize(
        "category,reason",
        [
            (TransportErrorCategory.UNAVAILABLE, "Server unavailable"),
            (TransportErrorCategory.TIMEOUT, "Request timeout"),
            (TransportErrorCategory.INTERNAL, "Server error"),
        ],
    )
    def test_transport_categories(self, category, reason):
        kind, text = classify_exception(TransportError(category, "fake://"))
        assert kind == FailureKind.TRANSIENT
        assert text == reason

    def test_generic_transport_includes_detail(self):
        error = TransportError(TransportErrorCategory.GENERIC, "fake://", "PERMISSION_DENIED")
        assert classify_exception(error) == (
            FailureKind.TRANSIENT,
            "Communication error: PERMISSION_DENIED",
        )

    def test_storage(self):
        assert classify_exception(StorageIOError("update"))[0] == FailureKind.STORAGE

    def test_unexpected(self):
        assert classify_exception(KeyError("x")) == (FailureKind.UNEXPECTED, "Unexpected error")

    def test_rejected_reason(self):
        assert rejected_reason(None) == "Server rejected the data"
        assert rejected_reason("Age out of range") == "Server rejected the data: Age out of range"
        assert FailureKind.REJECTED.retryable is False
        assert FailureKind.TRANSIENT.retryable is True


class TestSyncReport:
    def test_counts_partition(self):
        report = SyncReport(operation="sync_pending")
        report.record_success()
        report.record_failure(_failure())

        assert report.attempted == report.succeeded + report.failed == 2
        assert report.title == "Sync Partially Complete"

    def test_merge_counts_batches(self):
        report = SyncReport(operation="sync_changes")
        for _ in range(2):
            batch = SyncReport(operation="batch")
            batch.record_success()
            report.merge(batch)

        assert report.batches == 2
        assert report.succeeded == 2

    def test_render_lists_failures(self):
        report = SyncReport(operation="sync_pending")
        report.record_success()
        report.record_failure(_failure(2, "Server unavailable"))
        report.finish()

        text = report.render()

        assert "Successfully synced 1 records" in text
        assert "Failed to sync:" in text
        assert "- Ana Lima - Server unavailable" in text

    def test_nothing_to_sync(self):
        report = SyncReport(operation="sync_changes")
        report.finish()
        assert report.success is True
        assert report.title == "Sync Complete"
        assert report.render() == "There are no changes to sync."

    def test_all_failed(self):
        report = SyncReport(operation="sync_pending")
        report.record_failure(_failure())
        assert report.title == "Sync Failed"

    def test_skipped(self):
        report = SyncReport.skipped_run("sync_pending", "Another sync operation is in progress")
        assert report.success is False
        assert report.title == "Sync Skipped"
        assert report.render() == "Another sync operation is in progress"


class TestResyncReport:
    def test_empty_server(self):
        assert ResyncReport().render() == "No records found on server"

    def test_metrics(self):
        report = ResyncReport(
            total_records=100,
            replaced=True,
            fetch_duration_ms=500,
            save_duration_ms=250,
            total_duration_ms=1000,
        )

        assert report.throughput == 100.0
        text = report.render()
        assert "Total records: 100" in text
        assert "Average fetch time: 5.00 ms/record" in text
        assert "Throughput: 100.00 records/second" in text
