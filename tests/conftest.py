from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from genai_tasks.config.settings import Settings
from genai_tasks.core.orchestrator import TaskOrchestrator
from genai_tasks.storage.memory import InMemoryTaskStorage

from fakes import FakeGenerationClient


@pytest.fixture
def storage() -> InMemoryTaskStorage:
    return InMemoryTaskStorage()


@pytest.fixture
def fake_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def orchestrator(
    storage: InMemoryTaskStorage, fake_client: FakeGenerationClient
) -> Iterator[TaskOrchestrator]:
    engine = TaskOrchestrator(storage=storage, client=fake_client, max_workers=4)
    yield engine
    fake_client.release()
    engine.shutdown(wait=True)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(storage_backend="memory", gemini_api_key="test-key", max_workers=4)


@pytest.fixture
def api_client(
    storage: InMemoryTaskStorage,
    fake_client: FakeGenerationClient,
    test_settings: Settings,
) -> Iterator[TestClient]:
    from genai_tasks.api.main import create_app

    app = create_app(storage=storage, client=fake_client, settings_override=test_settings)
    with TestClient(app) as client:
        assert client.app.state.storage is storage
        assert client.app.state.client is fake_client
        try:
            yield client
        finally:
            fake_client.release()
