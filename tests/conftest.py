import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from seo_llm_core.backoff import BackoffPair
from seo_llm_core.config import OrchestratorSettings


@pytest.fixture
def fast_settings() -> OrchestratorSettings:
    """Settings with every wait shrunk to milliseconds."""
    return OrchestratorSettings(
        min_call_spacing=0.0,
        max_cooldown_wait=0.01,
        rate_limit_backoff=BackoffPair(0.001, 0.002),
        server_fault_backoff=BackoffPair(0.001, 0.002),
        timeout_base=2.0,
        timeout_per_1000_chars=0.0,
        timeout_max=2.0,
        stream_stall_timeout=1.0,
    )


@pytest.fixture
def api_keys() -> list:
    return ["key-alpha-000000", "key-bravo-111111", "key-charlie-222222"]


class FakeClock:
    """Stand-in for ``time.time`` that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr("seo_llm_core.credential_pool.time.time", fake)
    return fake
