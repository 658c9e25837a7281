"""Tests for the ingestion engine."""

from __future__ import annotations

import asyncio

import pytest

from lead_ingestor.engine import EngineEvent, IngestionEngine
from lead_ingestor.exceptions import JobTimeoutError, SourceDisabledError, SourceNotFoundError
from lead_ingestor.pipeline.steps import FunctionStep, Payload
from lead_ingestor.schemas.ingestion import IngestionStatus
from lead_ingestor.schemas.source import DataSource, DataSourceType
from lead_ingestor.utils.config import GlobalSettings


def _assert_counters(job) -> None:
    assert job.processed_records <= job.total_records
    assert job.successful_records + job.failed_records <= job.processed_records


class _Recorder:
    """Builds pipeline steps that log their execute and rollback calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Payload]] = []

    def step(self, name: str, *, fail: bool = False, with_rollback: bool = True) -> FunctionStep:
        async def execute(data: Payload) -> Payload:
            self.calls.append(("execute", name, dict(data)))
            if fail:
                raise RuntimeError(f"{name} exploded")
            return {**data, name: True}

        async def rollback(data: Payload) -> None:
            self.calls.append(("rollback", name, dict(data)))

        return FunctionStep(name, execute, rollback if with_rollback else None)

    def names(self, kind: str) -> list[str]:
        return [name for call_kind, name, _ in self.calls if call_kind == kind]


class TestRegistration:
    """Test suite for source and pipeline registration."""

    def test_register_and_lookup_source(self, engine: IngestionEngine, people_source: DataSource):
        assert engine.get_source("people") is people_source
        assert engine.get_source("missing") is None
        assert [source.id for source in engine.get_sources()] == ["people"]

    def test_registering_same_id_replaces(self, engine: IngestionEngine, people_source: DataSource):
        renamed = people_source.model_copy(update={"name": "Renamed"})
        engine.register_source(renamed)

        assert len(engine.get_sources()) == 1
        assert engine.get_source("people").name == "Renamed"

    def test_source_registered_event(self, settings: GlobalSettings, people_source: DataSource):
        engine = IngestionEngine(settings)
        seen: list[DataSource] = []
        engine.on(EngineEvent.SOURCE_REGISTERED, seen.append)

        engine.register_source(people_source)
        assert seen == [people_source]

    def test_register_pipeline_last_call_wins(self, engine: IngestionEngine):
        recorder = _Recorder()
        engine.register_pipeline(DataSourceType.API, [recorder.step("a")])
        engine.register_pipeline("api", [recorder.step("b"), recorder.step("c")])

        assert [step.name for step in engine.get_pipeline(DataSourceType.API)] == ["b", "c"]
        assert engine.get_pipeline(DataSourceType.AGENT) == []

    def test_engines_are_isolated(self, settings: GlobalSettings, engine: IngestionEngine):
        other = IngestionEngine(settings)
        assert other.get_sources() == []
        assert engine.get_sources() != []


class TestStartIngestion:
    """Test suite for job submission and processing."""

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self, engine: IngestionEngine):
        with pytest.raises(SourceNotFoundError, match="Unknown source: nope"):
            engine.start_ingestion("nope", [{"name": "Ada"}], "tester")
        assert engine.get_active_jobs() == []

    @pytest.mark.asyncio
    async def test_disabled_source_raises(self, engine: IngestionEngine, people_source: DataSource):
        engine.register_source(people_source.model_copy(update={"enabled": False}))
        with pytest.raises(SourceDisabledError):
            engine.start_ingestion("people", [{"name": "Ada"}], "tester")

    @pytest.mark.asyncio
    async def test_returns_pending_job_immediately(self, engine: IngestionEngine):
        job = engine.start_ingestion("people", [{"name": "Ada"}], "tester")

        assert job.status is IngestionStatus.PENDING
        assert job.name == "People Feed Import"
        assert job.total_records == 1
        assert job.created_by == "tester"
        assert engine.get_job_status(job.id) is job

        finished = await engine.wait_for_job(job.id)
        assert finished is job
        assert job.status is IngestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finished_jobs_are_evicted(self, engine: IngestionEngine):
        job = await engine.run_ingestion("people", [{"name": "Ada"}], "tester")

        assert job.status is IngestionStatus.COMPLETED
        assert engine.get_job_status(job.id) is None
        assert engine.get_active_jobs() == []
        assert await engine.wait_for_job(job.id) is None

    @pytest.mark.asyncio
    async def test_records_are_validated_and_transformed(self, engine: IngestionEngine):
        job = await engine.run_ingestion(
            "people",
            [{"name": "Ada", "email": " ADA@EXAMPLE.COM", "tags": "x;y"}],
            "tester",
        )

        record = job.records[0]
        assert record.row == 1
        assert record.status is IngestionStatus.COMPLETED
        assert record.normalized_data == {
            "name": "Ada",
            "contactEmail": "ada@example.com",
            "tags": ["x", "y"],
        }
        assert record.raw_data["email"] == " ADA@EXAMPLE.COM"

    @pytest.mark.asyncio
    async def test_partial_job(self, engine: IngestionEngine):
        job = await engine.run_ingestion(
            "people", [{"name": "Ada"}, {"age": 3}, {"name": "Bob", "age": -1}], "tester"
        )

        assert job.status is IngestionStatus.PARTIAL
        assert job.processed_records == 3
        assert job.successful_records == 1
        assert job.failed_records == 2
        assert [(issue.row, issue.field) for issue in job.errors] == [(2, "name"), (3, "age")]
        _assert_counters(job)

    @pytest.mark.asyncio
    async def test_all_invalid_job_fails(self, engine: IngestionEngine):
        job = await engine.run_ingestion("people", [{"age": 1}, "not an object"], "tester")

        assert job.status is IngestionStatus.FAILED
        assert job.failed_records == 2
        assert job.errors[1].field == "_record"

    @pytest.mark.asyncio
    async def test_empty_batch_completes(self, engine: IngestionEngine):
        job = await engine.run_ingestion("people", [], "tester")

        assert job.status is IngestionStatus.COMPLETED
        assert job.total_records == 0
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_invalid_records_skip_the_pipeline(self, engine: IngestionEngine):
        recorder = _Recorder()
        engine.register_pipeline(DataSourceType.API, [recorder.step("enrich")])

        job = await engine.run_ingestion("people", [{"age": 1}, {"name": "Ada"}], "tester")

        assert len(recorder.calls) == 1
        assert recorder.calls[0][2] == {"name": "Ada"}
        assert job.completed_records()[0].normalized_data == {"name": "Ada", "enrich": True}

    @pytest.mark.asyncio
    async def test_counters_hold_while_running(self, engine: IngestionEngine):
        snapshots: list[tuple[int, int, int, int]] = []

        def snapshot(job) -> None:
            _assert_counters(job)
            snapshots.append(
                (
                    job.total_records,
                    job.processed_records,
                    job.successful_records,
                    job.failed_records,
                )
            )

        engine.on(EngineEvent.JOB_PROGRESS, snapshot)
        await engine.run_ingestion("people", [{"name": "Ada"}, {"age": 2}], "tester")

        assert snapshots
        assert snapshots[-1] == (2, 2, 1, 1)


class TestPipelineFailures:
    """Test suite for step failures and rollback."""

    @pytest.mark.asyncio
    async def test_failing_step_fails_only_that_record(self, engine: IngestionEngine):
        async def reject_bob(data: Payload) -> Payload:
            if data["name"] == "Bob":
                raise ValueError("Bob is not allowed")
            return data

        engine.register_pipeline(DataSourceType.API, [FunctionStep("gate", reject_bob)])
        job = await engine.run_ingestion("people", [{"name": "Ada"}, {"name": "Bob"}], "tester")

        assert job.status is IngestionStatus.PARTIAL
        failed = job.records[1]
        assert failed.status is IngestionStatus.FAILED
        assert failed.metadata["failed_step"] == "gate"
        assert failed.validation_errors[0].field == "_pipeline"
        assert failed.validation_errors[0].message == "Bob is not allowed"
        assert any(issue.message == "Bob is not allowed" for issue in job.errors)

    @pytest.mark.asyncio
    async def test_executed_rollback_mode(self, settings: GlobalSettings, people_source: DataSource):
        engine = IngestionEngine(settings, rollback_mode="executed")
        engine.register_source(people_source)
        recorder = _Recorder()
        engine.register_pipeline(
            DataSourceType.API,
            [
                recorder.step("first"),
                recorder.step("second", with_rollback=False),
                recorder.step("third", fail=True),
                recorder.step("fourth"),
            ],
        )

        await engine.run_ingestion("people", [{"name": "Ada"}], "tester")

        assert recorder.names("execute") == ["first", "second", "third"]
        assert recorder.names("rollback") == ["first"]
        rollback_payload = recorder.calls[-1][2]
        assert rollback_payload == {"name": "Ada", "first": True}

    @pytest.mark.asyncio
    async def test_executed_rollback_runs_newest_first(self, engine: IngestionEngine):
        recorder = _Recorder()
        engine.register_pipeline(
            DataSourceType.API,
            [recorder.step("a"), recorder.step("b"), recorder.step("c", fail=True)],
        )

        await engine.run_ingestion("people", [{"name": "Ada"}], "tester")
        assert recorder.names("rollback") == ["b", "a"]

    @pytest.mark.asyncio
    async def test_all_rollback_mode(self, settings: GlobalSettings, people_source: DataSource):
        engine = IngestionEngine(settings, rollback_mode="all")
        engine.register_source(people_source)
        recorder = _Recorder()
        engine.register_pipeline(
            DataSourceType.API,
            [
                recorder.step("first"),
                recorder.step("second", fail=True),
                recorder.step("third"),
                recorder.step("fourth", with_rollback=False),
            ],
        )

        await engine.run_ingestion("people", [{"name": "Ada"}], "tester")

        assert recorder.names("rollback") == ["first", "second", "third"]
        assert all(
            payload == {"name": "Ada"}
            for kind, _, payload in recorder.calls
            if kind == "rollback"
        )

    def test_rollback_mode_defaults_to_settings(self):
        engine = IngestionEngine(GlobalSettings(rollback_mode="all"))
        assert engine.rollback_mode == "all"

    @pytest.mark.asyncio
    async def test_rollback_errors_are_swallowed(self, engine: IngestionEngine):
        async def ok(data: Payload) -> Payload:
            return data

        async def broken_rollback(data: Payload) -> None:
            raise RuntimeError("cannot undo")

        async def fail(data: Payload) -> Payload:
            raise RuntimeError("step failed")

        engine.register_pipeline(
            DataSourceType.API,
            [FunctionStep("store", ok, broken_rollback), FunctionStep("fail", fail)],
        )

        job = await engine.run_ingestion("people", [{"name": "Ada"}, {"name": "Bob"}], "tester")

        assert job.status is IngestionStatus.FAILED
        assert job.failed_records == 2
        assert job.records[0].validation_errors[0].message == "step failed"


class TestEventsAndControl:
    """Test suite for events, cancellation and waiting."""

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, engine: IngestionEngine):
        events: list[str] = []
        engine.on(EngineEvent.JOB_STARTED, lambda job: events.append("started"))
        engine.on(EngineEvent.RECORD_PROCESSED, lambda record: events.append("record"))
        engine.on(EngineEvent.JOB_COMPLETED, lambda job: events.append(job.status.value))

        await engine.run_ingestion("people", [{"name": "Ada"}, {"name": "Bob"}], "tester")
        assert events == ["started", "record", "record", "completed"]

    @pytest.mark.asyncio
    async def test_off_removes_listener(self, engine: IngestionEngine):
        events: list[str] = []

        def listener(job) -> None:
            events.append(job.id)

        engine.on(EngineEvent.JOB_STARTED, listener)
        engine.off(EngineEvent.JOB_STARTED, listener)
        await engine.run_ingestion("people", [{"name": "Ada"}], "tester")
        assert events == []

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_jobs(self, engine: IngestionEngine):
        def broken(job) -> None:
            raise RuntimeError("listener failure")

        engine.on("job:progress", broken)
        job = await engine.run_ingestion("people", [{"name": "Ada"}], "tester")
        assert job.status is IngestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_ingestion(self, engine: IngestionEngine):
        release = asyncio.Event()

        async def slow(data: Payload) -> Payload:
            await release.wait()
            return data

        engine.register_pipeline(DataSourceType.API, [FunctionStep("slow", slow)])
        failures: list[tuple[str, object]] = []
        engine.on(EngineEvent.JOB_FAILED, lambda job, error: failures.append((job.id, error)))

        job = engine.start_ingestion("people", [{"name": "Ada"}, {"name": "Bob"}], "tester")
        while job.status is not IngestionStatus.PROCESSING:
            await asyncio.sleep(0)

        assert engine.cancel_ingestion(job.id) is True
        assert job.status is IngestionStatus.FAILED
        assert failures == [(job.id, None)]

        release.set()
        await engine.wait_for_job(job.id)

        assert job.status is IngestionStatus.FAILED
        assert job.errors[0].message == "Ingestion cancelled by user"
        assert job.records[1].validation_errors[0].message == (
            "Ingestion cancelled before processing"
        )
        assert engine.cancel_ingestion(job.id) is False

    def test_cancel_unknown_job(self, engine: IngestionEngine):
        assert engine.cancel_ingestion("missing") is False

    @pytest.mark.asyncio
    async def test_wait_for_job_timeout(self, engine: IngestionEngine):
        release = asyncio.Event()

        async def slow(data: Payload) -> Payload:
            await release.wait()
            return data

        engine.register_pipeline(DataSourceType.API, [FunctionStep("slow", slow)])
        job = engine.start_ingestion("people", [{"name": "Ada"}], "tester")

        with pytest.raises(JobTimeoutError):
            await engine.wait_for_job(job.id, timeout=0.01)

        # The job keeps running after the timeout.
        assert engine.get_job_status(job.id) is job
        release.set()
        finished = await engine.wait_for_job(job.id, timeout=1)
        assert finished.status is IngestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_jobs(self, engine: IngestionEngine):
        job = engine.start_ingestion("people", [{"name": "Ada"}], "tester")
        await engine.shutdown()

        assert job.status is IngestionStatus.COMPLETED
        assert engine.get_active_jobs() == []

    @pytest.mark.asyncio
    async def test_shutdown_without_wait_cancels(self, engine: IngestionEngine):
        async def forever(data: Payload) -> Payload:
            await asyncio.Event().wait()
            return data

        engine.register_pipeline(DataSourceType.API, [FunctionStep("forever", forever)])
        job = engine.start_ingestion("people", [{"name": "Ada"}], "tester")
        while job.status is not IngestionStatus.PROCESSING:
            await asyncio.sleep(0)

        await engine.shutdown(wait=False)
        assert engine.get_job_status(job.id) is None
