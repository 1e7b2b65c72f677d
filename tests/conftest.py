from __future__ import annotations

import sys
from pathlib import Path

# Ensure repo root is on sys.path so `import engagement` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from engagement.main import app  # noqa: E402
from engagement.services.kv_store import InMemoryKVStore, kv_store  # noqa: E402
from engagement.services.scheduler import InMemoryScheduler, scheduler  # noqa: E402


class FakeClock:
    """Deterministic epoch-millisecond clock; advances 1ms per read."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def reset_kv_store() -> None:
    """Clear the shared in-memory store between tests."""
    if isinstance(kv_store, InMemoryKVStore):
        kv_store.clear()


@pytest.fixture(autouse=True)
def reset_scheduler() -> None:
    """Forget published jobs between tests."""
    if isinstance(scheduler, InMemoryScheduler):
        scheduler.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def store() -> InMemoryKVStore:
    return InMemoryKVStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
