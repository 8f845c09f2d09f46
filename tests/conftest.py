"""Pytest configuration and fixtures."""

import asyncio
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from studio_sync.app import StudioApp, build_app
from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.core.config import StudioConfig
from studio_sync.core.models import (
    ArtifactDescriptor,
    GenerationResult,
    OperationHandle,
    RequestPayload,
    RequestType,
)
from studio_sync.generation.retry import RetryPolicy
from studio_sync.generation.service import GenerationService
from studio_sync.store.database import LocalStore


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeGenerationService(GenerationService):
    """
    Scripted in-memory generation service.

    - submit_outcomes / status_outcomes: consumed in order; exceptions are
      raised, other values returned
    - failing_prompts: prompts that always raise the mapped exception
    - gates: prompts whose submit waits until the mapped event is set
    Without scripted outcomes every call succeeds.
    """

    def __init__(self) -> None:
        self.submit_outcomes: list = []
        self.status_outcomes: list = []
        self.failing_prompts: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.download_data = b"video-bytes"
        self.calls: list[tuple] = []
        self.closed = False

    def submit_count(self, prompt: str | None = None) -> int:
        return sum(
            1 for call in self.calls if call[0] == "submit" and (prompt is None or call[2] == prompt)
        )

    async def submit(
        self, request_type: RequestType, payload: RequestPayload, credential: str
    ) -> GenerationResult | OperationHandle:
        self.calls.append(("submit", request_type, payload.prompt, credential))
        if payload.prompt in self.gates:
            await self.gates[payload.prompt].wait()
        if payload.prompt in self.failing_prompts:
            raise self.failing_prompts[payload.prompt]
        if self.submit_outcomes:
            outcome = self.submit_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        if request_type.is_async:
            return OperationHandle(name=f"operations/op-{len(self.calls)}", request_type=request_type)
        if request_type is RequestType.GENERATE_SCRIPT:
            return GenerationResult(mime_type="text/plain", text=f"Script: {payload.prompt}")
        return GenerationResult.from_bytes(f"image:{payload.prompt}".encode(), "image/jpeg")

    async def get_operation_status(self, handle: OperationHandle, credential: str) -> OperationHandle:
        self.calls.append(("status", handle.name))
        if self.status_outcomes:
            outcome = self.status_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return handle.model_copy(
            update={
                "done": True,
                "result": ArtifactDescriptor(uri=f"https://files.example.test/{handle.name}"),
            }
        )

    async def download_artifact(self, descriptor: ArtifactDescriptor, credential: str) -> bytes:
        self.calls.append(("download", descriptor.uri))
        return self.download_data

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_service() -> FakeGenerationService:
    return FakeGenerationService()


@pytest_asyncio.fixture
async def store(temp_dir: Path) -> AsyncGenerator[LocalStore, None]:
    """Provide an initialized store in a temporary directory."""
    local_store = LocalStore(temp_dir / "studio.db")
    await local_store.initialize()
    yield local_store
    await local_store.close()


@pytest_asyncio.fixture
async def studio(
    temp_dir: Path, fake_service: FakeGenerationService, recording_sleep: RecordingSleep
) -> AsyncGenerator[StudioApp, None]:
    """Provide a started app that begins offline, backed by the fake service."""
    config = StudioConfig(db_path=temp_dir / "studio.db", poll_interval_seconds=0.001)
    app = build_app(
        config,
        service=fake_service,
        credentials=lambda service: "test-key",
        monitor=ConnectivityMonitor(initially_online=False, recovery_window=0.05),
        retry_policy=RetryPolicy(sleep=recording_sleep),
    )
    await app.start()
    yield app
    await app.close()
