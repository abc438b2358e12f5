"""Tests for the concurrent task lane."""

import asyncio

import pytest

from ripit.error_handling import RegistrationError, ResourceError, ValidationError
from ripit.tasks.processor import TaskProcessor
from ripit.tasks.types import TaskContext, TaskEnvelope


def wait_for_cancel(started: asyncio.Event | None = None):
    async def handler(ctx: TaskContext) -> None:
        if started is not None:
            started.set()
        while not ctx.token.cancelled:
            await asyncio.sleep(0.01)

    return handler


class TestTaskProcessor:
    """Test task admission, execution and event emission."""

    @pytest.fixture
    def processor(self, recorder):
        return TaskProcessor(recorder)

    @pytest.mark.asyncio
    async def test_result_event(self, processor, recorder):
        async def handler(ctx: TaskContext) -> None:
            ctx.progress("Working", {"step": 1})
            ctx.result({"echo": ctx.payload})

        processor.register("ECHO", handler)
        task_id = processor.run(TaskEnvelope("ECHO", "hi"))
        await processor.wait_idle()

        events = recorder.for_task(task_id)
        assert [e.type for e in events] == ["progress", "result"]
        assert events[0].message == "Working"
        assert events[1].payload == {"echo": "hi"}
        assert processor.active_task_ids == []

    @pytest.mark.asyncio
    async def test_tasks_run_concurrently(self, processor, recorder):
        release = asyncio.Event()
        started: list[str] = []

        async def handler(ctx: TaskContext) -> None:
            started.append(ctx.task_id)
            await release.wait()
            ctx.result()

        processor.register("WAIT", handler)
        first = processor.run(TaskEnvelope("WAIT"))
        second = processor.run(TaskEnvelope("WAIT"))
        await asyncio.sleep(0.05)

        assert sorted(started) == sorted([first, second])

        release.set()
        await processor.wait_idle()
        assert recorder.types_for(first) == ["result"]
        assert recorder.types_for(second) == ["result"]

    @pytest.mark.asyncio
    async def test_ripit_error_becomes_error_event(self, processor, recorder):
        async def handler(ctx: TaskContext) -> None:
            raise ResourceError("Not enough disk space")

        processor.register("FAIL", handler)
        task_id = processor.run(TaskEnvelope("FAIL"))
        await processor.wait_idle()

        events = recorder.for_task(task_id)
        assert len(events) == 1
        assert events[0].type == "error"
        assert events[0].message == "Not enough disk space"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_event(self, processor, recorder):
        async def handler(ctx: TaskContext) -> None:
            raise KeyError("boom")

        processor.register("FAIL", handler)
        task_id = processor.run(TaskEnvelope("FAIL"))
        await processor.wait_idle()

        assert recorder.types_for(task_id) == ["error"]

    @pytest.mark.asyncio
    async def test_error_payload_attached(self, processor, recorder):
        async def handler(ctx: TaskContext) -> None:
            error = ResourceError("Downloaded track not found")
            error.event_payload = {"fileId": "f1", "stage": 2}
            raise error

        processor.register("FAIL", handler)
        task_id = processor.run(TaskEnvelope("FAIL"))
        await processor.wait_idle()

        assert recorder.for_task(task_id)[0].payload == {"fileId": "f1", "stage": 2}

    @pytest.mark.asyncio
    async def test_abort_running_task(self, processor, recorder):
        started = asyncio.Event()
        processor.register("LONG", wait_for_cancel(started))

        task_id = processor.run(TaskEnvelope("LONG"))
        await started.wait()

        assert processor.abort(task_id) is True
        await processor.wait_idle()

        assert recorder.types_for(task_id) == ["cancelled"]

    @pytest.mark.asyncio
    async def test_abort_unknown_task(self, processor, recorder):
        assert processor.abort("missing") is False
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, processor):
        with pytest.raises(ValidationError, match="No handler registered"):
            processor.run(TaskEnvelope("NOPE"))

    def test_duplicate_registration(self, processor):
        async def handler(ctx: TaskContext) -> None:
            pass

        processor.register("ONE", handler)

        with pytest.raises(RegistrationError):
            processor.register("ONE", handler)
        assert processor.handles("ONE")
        assert not processor.handles("TWO")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running(self, processor, recorder):
        started = asyncio.Event()
        processor.register("LONG", wait_for_cancel(started))
        task_id = processor.run(TaskEnvelope("LONG"))
        await started.wait()

        await processor.shutdown()

        assert recorder.types_for(task_id) == ["cancelled"]


class TestConcurrencyLimit:
    """Test the optional cap on running handlers."""

    @pytest.mark.asyncio
    async def test_limit_serializes_handlers(self, recorder):
        processor = TaskProcessor(recorder, max_concurrent=1)
        release = asyncio.Event()
        running: list[str] = []

        async def handler(ctx: TaskContext) -> None:
            running.append(ctx.task_id)
            await release.wait()
            ctx.result()

        processor.register("WAIT", handler)
        first = processor.run(TaskEnvelope("WAIT"))
        second = processor.run(TaskEnvelope("WAIT"))
        await asyncio.sleep(0.05)

        assert running == [first]

        release.set()
        await processor.wait_idle()
        assert running == [first, second]

    @pytest.mark.asyncio
    async def test_abort_while_waiting_for_slot(self, recorder):
        processor = TaskProcessor(recorder, max_concurrent=1)
        started = asyncio.Event()
        calls: list[str] = []

        async def handler(ctx: TaskContext) -> None:
            calls.append(ctx.task_id)
            started.set()
            while not ctx.token.cancelled:
                await asyncio.sleep(0.01)

        processor.register("LONG", handler)
        first = processor.run(TaskEnvelope("LONG"))
        second = processor.run(TaskEnvelope("LONG"))
        await started.wait()

        processor.abort(second)
        processor.abort(first)
        await processor.wait_idle()

        assert calls == [first]
        assert recorder.types_for(second) == ["cancelled"]
        assert recorder.types_for(first) == ["cancelled"]
