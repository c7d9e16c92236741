"""
Unit tests for job handlers.
"""

import logging

import pytest

from eventpipe.config import get_settings
from eventpipe.errors import ProcessingError
from eventpipe.ingest.validator import validate
from eventpipe.types.event import JobPayload
from eventpipe.types.job import JobContext, JobResult
from eventpipe.worker.handlers import execute_job, process_event
from tests.fakes import event_dict, make_record


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        record = make_record(3, event_dict("e1"))
        return JobContext(
            job_id="e1",
            attempt=1,
            max_attempts=3,
            payload=JobPayload.from_record(record, validate(record.raw)),
            worker_id="test-worker",
        )

    @pytest.fixture
    def no_work(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(get_settings(), "handler_work_seconds", 0)

    def test_context_properties(self, job_context: JobContext):
        assert job_context.event.event_id == "e1"
        assert job_context.payload.offset == 3
        assert job_context.is_last_attempt is False
        assert job_context.remaining_attempts == 2

        job_context.attempt = 3
        assert job_context.is_last_attempt is True
        assert job_context.remaining_attempts == 0

    @pytest.mark.asyncio
    async def test_process_event(
        self,
        job_context: JobContext,
        no_work: None,
        caplog: pytest.LogCaptureFixture,
    ):
        """The default handler logs the event and succeeds."""
        caplog.set_level(logging.INFO)

        result = await process_event(job_context)

        assert result.success is True
        assert result.output == {"event_id": "e1"}
        processing = [r for r in caplog.records if r.getMessage() == "Processing event"]
        assert processing[0].event_id == "e1"
        assert processing[0].event_type == "order.created"

    @pytest.mark.asyncio
    async def test_execute_job_success(self, job_context: JobContext):
        async def handler(context: JobContext) -> JobResult:
            return JobResult(success=True, output={"ok": True})

        result = await execute_job(handler, job_context)

        assert result.success is True
        assert result.output == {"ok": True}
        assert result.duration_ms is not None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_execute_job_processing_error(self, job_context: JobContext):
        async def handler(context: JobContext) -> JobResult:
            raise ProcessingError("payment service returned 503")

        result = await execute_job(handler, job_context)

        assert result.success is False
        assert result.error == "payment service returned 503"

    @pytest.mark.asyncio
    async def test_execute_job_unexpected_exception(self, job_context: JobContext):
        async def handler(context: JobContext) -> JobResult:
            raise KeyError("orderId")

        result = await execute_job(handler, job_context)

        assert result.success is False
        assert "KeyError" in result.error

    @pytest.mark.asyncio
    async def test_execute_job_failure_without_message(self, job_context: JobContext):
        async def handler(context: JobContext) -> JobResult:
            return JobResult(success=False)

        result = await execute_job(handler, job_context)

        assert result.success is False
        assert result.error == "Unknown error"

    @pytest.mark.asyncio
    async def test_execute_job_none_is_success(self, job_context: JobContext):
        async def handler(context: JobContext) -> None:
            return None

        result = await execute_job(handler, job_context)

        assert result.success is True
