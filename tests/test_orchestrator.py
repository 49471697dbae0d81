from __future__ import annotations

import pytest

from genai_tasks.core.orchestrator import TaskOrchestrator
from genai_tasks.errors import PersistenceError, ProviderError, TaskValidationError
from genai_tasks.storage.memory import InMemoryTaskStorage

from fakes import FakeGenerationClient


class FailingCreateStorage(InMemoryTaskStorage):
    def create_task(self, record):
        raise PersistenceError("database unavailable")


class FailingProcessingStorage(InMemoryTaskStorage):
    def update_task(self, task_id, *, status, result=None, error_detail=None):
        if status == "processing":
            raise PersistenceError("write timed out")
        return super().update_task(
            task_id, status=status, result=result, error_detail=error_detail
        )


class FailingTerminalStorage(InMemoryTaskStorage):
    def update_task(self, task_id, *, status, result=None, error_detail=None):
        if status in {"completed", "error"}:
            raise PersistenceError("connection reset")
        return super().update_task(
            task_id, status=status, result=result, error_detail=error_detail
        )


def test_submit_returns_before_provider_resolves(
    orchestrator: TaskOrchestrator, fake_client: FakeGenerationClient
) -> None:
    fake_client.block()

    task_id = orchestrator.submit_text("hello")

    record = orchestrator.storage.get_task(task_id)
    assert record is not None
    assert record.status in {"pending", "processing"}
    assert record.result is None
    assert record.error_detail is None

    fake_client.release()
    finished = orchestrator.wait(task_id, timeout=5)
    assert finished is not None
    assert finished.status == "completed"
    assert finished.result == "world"
    assert finished.error_detail is None
    assert finished.updated_at >= finished.created_at
    assert fake_client.calls == [{"kind": "text", "prompt": "hello"}]


def test_provider_failure_is_recorded_as_error(storage: InMemoryTaskStorage) -> None:
    client = FakeGenerationClient(error=ProviderError("Gemini generateContent network error: refused"))
    engine = TaskOrchestrator(storage=storage, client=client, max_workers=1)
    try:
        task_id = engine.submit_text("hello")
        record = engine.wait(task_id, timeout=5)
    finally:
        engine.shutdown()

    assert record is not None
    assert record.status == "error"
    assert record.result is None
    assert "network error" in record.error_detail


def test_unexpected_exception_still_reaches_terminal_state(storage: InMemoryTaskStorage) -> None:
    client = FakeGenerationClient(error=RuntimeError("boom"))
    engine = TaskOrchestrator(storage=storage, client=client, max_workers=1)
    try:
        record = engine.wait(engine.submit_text("hello"), timeout=5)
    finally:
        engine.shutdown()

    assert record.status == "error"
    assert record.error_detail == "Unexpected failure: boom"


def test_empty_provider_result_is_an_error(storage: InMemoryTaskStorage) -> None:
    engine = TaskOrchestrator(storage=storage, client=FakeGenerationClient(result=""), max_workers=1)
    try:
        record = engine.wait(engine.submit_text("hello"), timeout=5)
    finally:
        engine.shutdown()

    assert record.status == "error"
    assert record.result is None
    assert record.error_detail == "Provider returned an empty result"


@pytest.mark.parametrize("prompt", ["", "   ", None])
def test_empty_prompt_is_rejected_without_creating_a_task(
    orchestrator: TaskOrchestrator, fake_client: FakeGenerationClient, prompt
) -> None:
    with pytest.raises(TaskValidationError, match="Prompt is required"):
        orchestrator.submit_text(prompt)

    assert len(orchestrator.storage) == 0
    assert orchestrator.in_flight() == 0
    assert fake_client.calls == []


def test_unsupported_mime_type_is_rejected(
    orchestrator: TaskOrchestrator, fake_client: FakeGenerationClient
) -> None:
    with pytest.raises(TaskValidationError, match="Unsupported file type 'text/plain'"):
        orchestrator.submit_file(
            "summarize", content=b"plain text", filename="notes.txt", mime_type="text/plain"
        )

    assert len(orchestrator.storage) == 0
    assert fake_client.calls == []


def test_empty_and_oversized_files_are_rejected(storage: InMemoryTaskStorage) -> None:
    engine = TaskOrchestrator(
        storage=storage, client=FakeGenerationClient(), max_workers=1, max_file_bytes=4
    )
    try:
        with pytest.raises(TaskValidationError, match="must not be empty"):
            engine.submit_file("describe", content=b"", filename="a.png", mime_type="image/png")
        with pytest.raises(TaskValidationError, match="too large"):
            engine.submit_file("describe", content=b"12345", filename="a.png", mime_type="image/png")
    finally:
        engine.shutdown()

    assert len(storage) == 0


def test_file_task_passes_attachment_to_provider(
    orchestrator: TaskOrchestrator, fake_client: FakeGenerationClient
) -> None:
    task_id = orchestrator.submit_file(
        "describe this image",
        content=b"\x89PNG....",
        filename="C:\\Users\\me\\photo.png",
        mime_type="IMAGE/PNG; charset=binary",
    )
    record = orchestrator.wait(task_id, timeout=5)

    assert record.status == "completed"
    assert record.kind == "file"
    assert record.payload.filename == "photo.png"
    assert record.payload.mime_type == "image/png"
    assert fake_client.calls == [
        {
            "kind": "file",
            "prompt": "describe this image",
            "content": b"\x89PNG....",
            "filename": "photo.png",
            "mime_type": "image/png",
        }
    ]


def test_initial_write_failure_schedules_nothing() -> None:
    client = FakeGenerationClient()
    engine = TaskOrchestrator(storage=FailingCreateStorage(), client=client, max_workers=1)
    try:
        with pytest.raises(PersistenceError, match="database unavailable"):
            engine.submit_text("hello")
        assert engine.in_flight() == 0
    finally:
        engine.shutdown()

    assert client.calls == []


def test_processing_write_failure_does_not_abort_execution() -> None:
    engine = TaskOrchestrator(
        storage=FailingProcessingStorage(), client=FakeGenerationClient(), max_workers=1
    )
    try:
        record = engine.wait(engine.submit_text("hello"), timeout=5)
    finally:
        engine.shutdown()

    assert record.status == "completed"
    assert record.result == "world"


def test_terminal_write_failure_is_swallowed() -> None:
    storage = FailingTerminalStorage()
    engine = TaskOrchestrator(storage=storage, client=FakeGenerationClient(), max_workers=1)
    try:
        record = engine.wait(engine.submit_text("hello"), timeout=5)
    finally:
        engine.shutdown()

    assert record.status == "processing"
    assert record.result is None


def test_worker_pool_bounds_concurrent_provider_calls(storage: InMemoryTaskStorage) -> None:
    client = FakeGenerationClient(blocking=True)
    engine = TaskOrchestrator(storage=storage, client=client, max_workers=2)
    try:
        task_ids = [engine.submit_text(f"prompt {i}") for i in range(5)]
        assert client.started.acquire(timeout=5)
        assert client.started.acquire(timeout=5)
        assert not client.started.acquire(timeout=0.2)

        queued = [storage.get_task(task_id).status for task_id in task_ids]
        assert queued.count("pending") >= 3

        client.release()
        records = [engine.wait(task_id, timeout=5) for task_id in task_ids]
    finally:
        client.release()
        engine.shutdown()

    assert client.peak_active == 2
    assert {record.status for record in records} == {"completed"}
    assert len(set(task_ids)) == 5


def test_submit_after_shutdown_is_refused(storage: InMemoryTaskStorage) -> None:
    engine = TaskOrchestrator(storage=storage, client=FakeGenerationClient(), max_workers=1)
    engine.shutdown()

    with pytest.raises(RuntimeError, match="shut down"):
        engine.submit_text("hello")
    assert len(storage) == 0


def test_shutdown_during_submit_leaves_no_stranded_pending_task() -> None:
    class ShutdownOnCreateStorage(InMemoryTaskStorage):
        def __init__(self) -> None:
            super().__init__()
            self.engine: TaskOrchestrator | None = None
            self.created: list[str] = []

        def create_task(self, record):
            stored = super().create_task(record)
            self.created.append(record.task_id)
            self.engine.shutdown()
            return stored

    storage = ShutdownOnCreateStorage()
    client = FakeGenerationClient()
    engine = TaskOrchestrator(storage=storage, client=client, max_workers=1)
    storage.engine = engine

    with pytest.raises(RuntimeError, match="shut down"):
        engine.submit_text("hello")

    (task_id,) = storage.created
    record = storage.get_task(task_id)
    assert record.status == "error"
    assert "shutting down" in record.error_detail
    assert engine.in_flight() == 0
    assert client.calls == []
