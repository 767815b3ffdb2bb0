# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Exponential backoff with jitter."""

import random
from typing import NamedTuple


class BackoffPair(NamedTuple):
    """Base and maximum delay in seconds for one failure class."""

    base: float
    maximum: float


RATE_LIMIT_BACKOFF = BackoffPair(2.0, 15.0)
SERVER_FAULT_BACKOFF = BackoffPair(3.0, 20.0)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """
    Delay before the next attempt.

    Grows as ``base * 2**attempt`` with up to 50% random jitter on top,
    capped at ``maximum``.
    """
    exponential = base * (2**attempt)
    jitter = random.uniform(0, 0.5 * exponential)
    return min(exponential + jitter, maximum)
