import json
import random
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from core.errors import GenerationError
from core.generator import GeneratedContent, NothingToShare
from core.handlers import DataSources, Thresholds, build_handler_table
from core.quota import QuotaController
from core.scheduler import ProactiveScheduler
from core.sources import GoalsSource, MemorySource, PortfolioSource, ProjectsSource
from core.state_store import StateStore
from interfaces.base import DeliveryAdapter

# Monday
MONDAY = datetime(2026, 10, 19, 8, 10)


class FakeClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, hour: int, minute: int = 0):
        self.current = self.current.replace(hour=hour, minute=minute)

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


class FakeGenerator:
    def __init__(self, text: str = "Heads up: *AAPL* moved."):
        self.text = text
        self.error = None
        self.skip = False
        self.prompts = []

    async def generate(self, prompt: str, timeout=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        if self.skip:
            return NothingToShare()
        return GeneratedContent(text=self.text)


class FakeDelivery(DeliveryAdapter):
    def __init__(self):
        self.sent = []
        self.accept = True

    async def deliver(self, text: str, tag: str, idempotency_key: str) -> bool:
        if self.accept:
            self.sent.append((text, tag, idempotency_key))
        return self.accept


def write_json(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def sources(tmp_path, data_dir) -> DataSources:
    return DataSources(
        portfolio=PortfolioSource(data_dir),
        goals=GoalsSource(data_dir),
        projects=ProjectsSource(tmp_path / "projects"),
        memory=MemorySource(tmp_path / "memory", data_dir),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def state_path(tmp_path) -> Path:
    return tmp_path / "state" / "scheduler-state.json"


@pytest.fixture
def make_scheduler(sources, clock, generator, delivery, state_path):
    def _make(**overrides) -> ProactiveScheduler:
        options = dict(
            handlers=build_handler_table(sources, Thresholds()),
            generator=generator,
            delivery=delivery,
            store=StateStore(state_path),
            quota=QuotaController(daily_cap=8, cooldown_minutes=10),
            now_fn=clock,
            rng=random.Random(42),
        )
        options.update(overrides)
        return ProactiveScheduler(**options)

    return _make


@pytest.fixture
def failing_generator(generator) -> FakeGenerator:
    generator.error = GenerationError("generator timeout after 180s")
    return generator
