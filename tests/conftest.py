"""Shared pytest fixtures for orchestration tests.

This module provides:
- FakeSubmissionPort: in-memory TaskSubmissionPort with scriptable outcomes
- Storyboard factories (items, projects, character/location libraries)
- Async SQLite engine/session factory for StorageService tests
"""

import asyncio
from collections.abc import Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shotforge.models import Base
from shotforge.schemas.generation import (
    ImageTaskDescriptor,
    TaskDescriptor,
    TaskResult,
    TaskType,
    VideoTaskDescriptor,
)
from shotforge.schemas.storyboard import (
    Character,
    CharacterForm,
    Location,
    LocationForm,
    StoryboardItem,
    StoryboardProject,
)
from shotforge.services.storage import StorageService

Responder = Callable[[TaskDescriptor, str], TaskResult | None]


def succeed(descriptor: TaskDescriptor, task_id: str) -> TaskResult:
    """Default responder: every task succeeds with a backend-like payload."""
    if isinstance(descriptor, VideoTaskDescriptor):
        return TaskResult(
            task_id=task_id,
            success=True,
            payload={"video_url": f"https://cdn.test/{task_id}.mp4"},
            task_type=TaskType.VIDEO,
        )
    return TaskResult(
        task_id=task_id,
        success=True,
        payload={
            "full_image": f"https://cdn.test/{task_id}.png",
            "slices": [f"https://cdn.test/{task_id}_0.png"],
        },
    )


class FakeSubmissionPort:
    """In-memory TaskSubmissionPort.

    The responder decides each task's outcome; returning None leaves the
    task unsettled forever (exercises the orchestrator timeout). Results are
    delivered on the next event loop iteration, like a real backend.
    """

    def __init__(self, responder: Responder = succeed):
        self.responder = responder
        self.submitted: list[TaskDescriptor] = []
        self.task_ids: list[str] = []
        self.pause_calls = 0
        self.resume_calls = 0
        self.cancel_calls = 0
        self._listeners: dict[str, list[Callable[[TaskResult], None]]] = {}
        self._delivered: dict[str, TaskResult] = {}

    async def submit(self, descriptor: TaskDescriptor) -> str:
        task_id = f"task_{len(self.submitted) + 1}"
        self.submitted.append(descriptor)
        self.task_ids.append(task_id)
        result = self.responder(descriptor, task_id)
        if result is not None:
            asyncio.get_running_loop().call_soon(self._deliver, task_id, result)
        return task_id

    def subscribe(self, task_id: str, callback: Callable[[TaskResult], None]) -> Callable[[], None]:
        if task_id in self._delivered:
            callback(self._delivered[task_id])
            return lambda: None
        self._listeners.setdefault(task_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._listeners.get(task_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def pause_all(self) -> None:
        self.pause_calls += 1

    def resume_all(self) -> None:
        self.resume_calls += 1

    def cancel_all(self) -> None:
        self.cancel_calls += 1

    @property
    def image_prompts(self) -> list[str]:
        return [d.prompt for d in self.submitted if isinstance(d, ImageTaskDescriptor)]

    @property
    def video_descriptors(self) -> list[VideoTaskDescriptor]:
        return [d for d in self.submitted if isinstance(d, VideoTaskDescriptor)]

    def _deliver(self, task_id: str, result: TaskResult) -> None:
        self._delivered[task_id] = result
        for callback in list(self._listeners.pop(task_id, [])):
            callback(result)


@pytest.fixture
def fake_port() -> FakeSubmissionPort:
    """Fresh FakeSubmissionPort where every task succeeds."""
    return FakeSubmissionPort()


@pytest.fixture
def make_items() -> Callable[..., tuple[StoryboardItem, ...]]:
    """Factory for storyboard items with predictable prompts ("shot 0", "shot 1", ...)."""

    def _make(count: int, **overrides) -> tuple[StoryboardItem, ...]:
        return tuple(
            StoryboardItem(
                id=f"item_{i}",
                shot_number=f"S{i + 1:02d}",
                ai_prompt=f"shot {i}",
                dialogue=f"line {i}",
                **overrides,
            )
            for i in range(count)
        )

    return _make


@pytest.fixture
def make_project(make_items) -> Callable[..., StoryboardProject]:
    def _make(count: int = 3) -> StoryboardProject:
        return StoryboardProject(
            id="sb_1",
            project_id="proj_1",
            title="Harbor Morning",
            items=make_items(count),
        )

    return _make


@pytest.fixture
def character_library() -> tuple[Character, ...]:
    return (
        Character(
            id="char_aki",
            name="Aki",
            bio="a young fisher with a red scarf",
            forms=(CharacterForm(id="form_1", front_view_url="https://cdn.test/aki_front.png"),),
        ),
        Character(
            id="char_mira",
            name="Mira Sato",
            bio="the harbor master",
            reference_image_url="https://cdn.test/mira.png",
        ),
        Character(id="char_tom", name="Old Tom"),
    )


@pytest.fixture
def location_library() -> tuple[Location, ...]:
    return (
        Location(
            id="loc_pier",
            name="Pier",
            description="a wooden pier at dawn",
            forms=(LocationForm(id="lf_1", url="https://cdn.test/pier_day.png"),),
        ),
        Location(
            id="loc_market",
            name="Fish Market",
            description="a crowded fish market",
            reference_image_url="https://cdn.test/market.png",
        ),
    )


@pytest_asyncio.fixture
async def async_engine():
    """Create an async SQLite engine for testing.

    Uses in-memory SQLite with aiosqlite for fast test execution.
    Creates all tables before yielding, disposes after.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,  # one shared connection keeps the in-memory schema alive
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def storage(session_factory) -> StorageService:
    return StorageService(session_factory)
