# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Types shared by the request and stream orchestrators."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorAction(str, Enum):
    """What the retry loop does after a classified failure."""

    ROTATE = "rotate"  # Next attempt, next credential on the rotation
    SHRINK_PROMPT = "shrink_prompt"  # Next attempt with a shortened prompt
    FALLBACK = "fallback"  # Malformed JSON; fallback config on the final attempt
    FAIL = "fail"  # Not retryable; propagate


@dataclass
class RetryAttempt:
    """State of one iteration of an orchestration loop. Never persisted."""

    number: int  # 0-based
    max_attempts: int
    prompt: str
    credential_index: Optional[int] = None
    previous_error: Optional[BaseException] = None

    @property
    def is_final(self) -> bool:
        return self.number >= self.max_attempts - 1

    @property
    def label(self) -> str:
        return f"attempt {self.number + 1}/{self.max_attempts}"
