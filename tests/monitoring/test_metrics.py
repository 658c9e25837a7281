"""Tests for Prometheus metrics."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from lead_ingestor.bulk_import import BulkImportService
from lead_ingestor.engine import IngestionEngine
from lead_ingestor.monitoring.metrics import (
    record_import_rows,
    record_job_finished,
    record_job_started,
    record_record_outcome,
    record_rollback_failure,
    record_validation_error,
)
from lead_ingestor.pipeline.steps import FunctionStep
from lead_ingestor.schemas.imports import BulkImportConfig
from lead_ingestor.schemas.source import DataSourceType


def _get_metric_value(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Helper to retrieve current metric value from registry."""
    labels = labels or {}
    value = REGISTRY.get_sample_value(metric_name, labels)
    return float(value) if value is not None else 0.0


class TestMetricHelpers:
    """Tests for the metric recording helpers."""

    def test_job_started_and_finished(self) -> None:
        labels = {"source_type": "integration"}
        started_before = _get_metric_value("ingestion_jobs_started_total", labels)
        active_before = _get_metric_value("ingestion_active_jobs", labels)
        duration_before = _get_metric_value("ingestion_job_duration_seconds_count")

        record_job_started("integration")
        assert _get_metric_value("ingestion_active_jobs", labels) == pytest.approx(
            active_before + 1
        )

        record_job_finished("integration", "completed", 0.2)

        assert _get_metric_value("ingestion_jobs_started_total", labels) == pytest.approx(
            started_before + 1
        )
        assert _get_metric_value("ingestion_active_jobs", labels) == pytest.approx(active_before)
        assert _get_metric_value(
            "ingestion_jobs_finished_total", {**labels, "status": "completed"}
        ) >= 1
        assert _get_metric_value("ingestion_job_duration_seconds_count") == pytest.approx(
            duration_before + 1
        )

    def test_negative_duration_is_clamped(self) -> None:
        before = _get_metric_value("ingestion_job_duration_seconds_sum")
        record_job_started("integration")
        record_job_finished("integration", "failed", -5)
        assert _get_metric_value("ingestion_job_duration_seconds_sum") == pytest.approx(before)

    def test_record_outcome_and_validation_errors(self) -> None:
        outcome = {"source_type": "manual_entry", "outcome": "invalid"}
        field = {"source_type": "manual_entry", "field": "name"}
        outcome_before = _get_metric_value("ingestion_records_total", outcome)
        field_before = _get_metric_value("validation_errors_total", field)

        record_record_outcome("manual_entry", "invalid")
        record_validation_error("manual_entry", "name")

        assert _get_metric_value("ingestion_records_total", outcome) == pytest.approx(
            outcome_before + 1
        )
        assert _get_metric_value("validation_errors_total", field) == pytest.approx(
            field_before + 1
        )

    def test_rollback_failure(self) -> None:
        before = _get_metric_value("pipeline_rollback_failures_total", {"step": "helper"})
        record_rollback_failure("helper")
        after = _get_metric_value("pipeline_rollback_failures_total", {"step": "helper"})
        assert after == pytest.approx(before + 1)

    def test_import_rows_ignores_zero_counts(self) -> None:
        labels = {"format": "xml", "outcome": "failed"}
        before = _get_metric_value("bulk_import_rows_total", labels)

        record_import_rows("xml", "failed", 0)
        assert _get_metric_value("bulk_import_rows_total", labels) == pytest.approx(before)

        record_import_rows("xml", "failed", 3)
        assert _get_metric_value("bulk_import_rows_total", labels) == pytest.approx(before + 3)


class TestInstrumentation:
    """Tests that the engine and import service report metrics."""

    @pytest.mark.asyncio
    async def test_engine_counts_records_and_validation_errors(self, engine: IngestionEngine):
        completed = {"source_type": "api", "outcome": "completed"}
        invalid = {"source_type": "api", "outcome": "invalid"}
        field = {"source_type": "api", "field": "name"}
        finished = {"source_type": "api", "status": "partial"}
        before = {
            "completed": _get_metric_value("ingestion_records_total", completed),
            "invalid": _get_metric_value("ingestion_records_total", invalid),
            "field": _get_metric_value("validation_errors_total", field),
            "finished": _get_metric_value("ingestion_jobs_finished_total", finished),
        }

        await engine.run_ingestion("people", [{"name": "Ada"}, {"age": 1}], "tester")

        assert _get_metric_value("ingestion_records_total", completed) == pytest.approx(
            before["completed"] + 1
        )
        assert _get_metric_value("ingestion_records_total", invalid) == pytest.approx(
            before["invalid"] + 1
        )
        assert _get_metric_value("validation_errors_total", field) == pytest.approx(
            before["field"] + 1
        )
        assert _get_metric_value("ingestion_jobs_finished_total", finished) == pytest.approx(
            before["finished"] + 1
        )

    @pytest.mark.asyncio
    async def test_engine_counts_rollback_failures(self, engine: IngestionEngine):
        async def ok(data):
            return data

        async def broken_rollback(data):
            raise RuntimeError("cannot undo")

        async def fail(data):
            raise RuntimeError("downstream failure")

        engine.register_pipeline(
            DataSourceType.API,
            [FunctionStep("metrics_store", ok, broken_rollback), FunctionStep("metrics_fail", fail)],
        )
        labels = {"step": "metrics_store"}
        before = _get_metric_value("pipeline_rollback_failures_total", labels)

        await engine.run_ingestion("people", [{"name": "Ada"}], "tester")

        assert _get_metric_value("pipeline_rollback_failures_total", labels) == pytest.approx(
            before + 1
        )

    @pytest.mark.asyncio
    async def test_import_rows_are_counted(self, engine: IngestionEngine, settings):
        service = BulkImportService(engine, settings)
        successful = {"format": "csv", "outcome": "successful"}
        failed = {"format": "csv", "outcome": "failed"}
        before_ok = _get_metric_value("bulk_import_rows_total", successful)
        before_failed = _get_metric_value("bulk_import_rows_total", failed)

        await service.run_import(
            "name,age\nAda,\n,4\n",
            BulkImportConfig(format="csv", source_id="people"),
            "tester",
        )

        assert _get_metric_value("bulk_import_rows_total", successful) == pytest.approx(
            before_ok + 1
        )
        assert _get_metric_value("bulk_import_rows_total", failed) == pytest.approx(
            before_failed + 1
        )
