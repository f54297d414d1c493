"""
Shared fixtures for the hashing engine tests.
"""

import io
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from pyhashlib import AsyncLogger, EngineConfig, Event, EventType, HashManager


class EventRecorder:
    """Collects every event delivered by an EventBus / HashManager."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of(self, event_type: EventType) -> List[Event]:
        return [e for e in self.events if e.type == event_type]

    def payloads(self, event_type: EventType) -> List[dict]:
        return [e.payload for e in self.of(event_type)]

    def updated_by_path(self) -> Dict[str, dict]:
        return {p["path"]: p for p in self.payloads(EventType.FILE_UPDATED)}

    def states(self, run_id: Optional[str] = None) -> List[str]:
        return [
            e.payload["state"] for e in self.of(EventType.RUN_STATE)
            if run_id is None or e.run_id == run_id
        ]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def quiet_logger() -> AsyncLogger:
    return AsyncLogger(name="pyhashlib.tests", stream=io.StringIO())


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """
    tree/
      a.txt            "test"
      b.bin            4 KiB of 0xAB
      sub/c.txt        "hello world"
      sub/deeper/d.txt ""
    """
    root = tmp_path / "tree"
    files = {
        "a.txt": b"test",
        "b.bin": b"\xab" * 4096,
        "sub/c.txt": b"hello world",
        "sub/deeper/d.txt": b"",
    }
    for name, content in files.items():
        p = root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content)
    return root


def make_manager(**config) -> HashManager:
    config.setdefault("max_concurrent", 2)
    return HashManager(config=EngineConfig(**config), log_stream=io.StringIO())


@pytest_asyncio.fixture
async def manager(recorder: EventRecorder):
    mgr = make_manager()
    mgr.listen(None, recorder)
    yield mgr
    await mgr.close()
