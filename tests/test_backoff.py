import pytest

from seo_llm_core.backoff import (
    RATE_LIMIT_BACKOFF,
    SERVER_FAULT_BACKOFF,
    backoff_delay,
)


def test_backoff_grows_with_jitter_bounds() -> None:
    for attempt in range(3):
        exponential = 2.0 * 2**attempt
        for _ in range(50):
            delay = backoff_delay(attempt, 2.0, 100.0)
            assert exponential <= delay <= exponential * 1.5


@pytest.mark.parametrize("pair", [RATE_LIMIT_BACKOFF, SERVER_FAULT_BACKOFF])
def test_backoff_is_capped(pair) -> None:
    for attempt in range(10):
        assert backoff_delay(attempt, *pair) <= pair.maximum


def test_failure_class_pairs() -> None:
    assert RATE_LIMIT_BACKOFF == (2.0, 15.0)
    assert SERVER_FAULT_BACKOFF == (3.0, 20.0)
