# caption_worker/tests/conftest.py
from __future__ import annotations

# Import/bootstrap so "import caption_worker" works when running pytest from anywhere
import os
import sys
import threading
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent  # .../caption_worker/tests
REPO_ROOT = TESTS_DIR.parent.parent  # repo root

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Fast, deterministic test defaults: no jsonl log files, a dummy api key,
# and nothing that needs a live redis or captioning endpoint.
os.environ.setdefault("WORKER_CAPTION_KEY", "test-key")
os.environ.setdefault("LOG_DIR", "")
os.environ.setdefault("STATUS_ENABLED", "0")


class BlockingCaptionService:
    """Caption service double that parks every call until release is set."""

    def __init__(self, caption: str = "a caption"):
        self.caption = caption
        self.calls = []
        self._lock = threading.Lock()
        self.entered = threading.Event()
        self.release = threading.Event()

    def enrich(self, photo_url: str) -> str:
        with self._lock:
            self.calls.append(photo_url)
        self.entered.set()
        assert self.release.wait(5), "test never released the caption service"
        return self.caption


class BarrierCaptionService:
    """Caption service double whose calls only return once `parties` overlap."""

    def __init__(self, parties: int = 2, caption: str = "a caption"):
        self.caption = caption
        self.calls = []
        self._lock = threading.Lock()
        self.barrier = threading.Barrier(parties, timeout=5)

    def enrich(self, photo_url: str) -> str:
        self.barrier.wait()
        with self._lock:
            self.calls.append(photo_url)
        return self.caption


@pytest.fixture
def blocking_service():
    svc = BlockingCaptionService()
    yield svc
    svc.release.set()


@pytest.fixture
def barrier_service():
    return BarrierCaptionService()
