# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Configuration for the generation orchestrators.

Per-call options are explicit dataclasses rather than open-ended dicts;
process-wide tunables live in ``OrchestratorSettings`` and can be loaded
from environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .backoff import BackoffPair, RATE_LIMIT_BACKOFF, SERVER_FAULT_BACKOFF
from .credential_pool import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_DAILY_COOLDOWN_SECONDS,
    DEFAULT_MAX_COOLDOWN_MULTIPLIER,
)

lib_logger = logging.getLogger("seo_llm_core")


DEFAULT_MODEL = "gemini/gemini-2.5-flash"
DEFAULT_FALLBACK_MODEL = "gemini/gemini-2.0-flash"

JSON_ONLY_INSTRUCTION = (
    "\n\nCRITICAL: Return ONLY a valid JSON object. No text before or after. "
    "No markdown. Start with { and end with }."
)


# =============================================================================
# PER-CALL OPTIONS
# =============================================================================


@dataclass(frozen=True)
class GenerationOptions:
    """
    Options for a non-streaming generate call.

    Attributes:
        temperature: Sampling temperature; None leaves the provider default.
        json_mode: Ask the provider for JSON and repair the response before
            returning it. A response that cannot be repaired is retried.
        max_output_tokens: Upper bound on generated tokens.
        use_external_retrieval: Enable the provider's search grounding tool.
    """

    temperature: Optional[float] = None
    json_mode: bool = True
    max_output_tokens: int = 8192
    use_external_retrieval: bool = False


@dataclass(frozen=True)
class StreamOptions:
    """
    Options for a streaming generate call. Streams are always plain text.

    Attributes:
        temperature: Sampling temperature.
        max_output_tokens: Upper bound on generated tokens.
        use_external_retrieval: Enable the provider's search grounding tool.
    """

    temperature: Optional[float] = 0.7
    max_output_tokens: int = 32768
    use_external_retrieval: bool = False


# =============================================================================
# PROCESS-WIDE SETTINGS
# =============================================================================


@dataclass
class OrchestratorSettings:
    """Tunables shared by both orchestrators and the credential pool."""

    model: str = DEFAULT_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    fallback_temperature: float = 0.1

    # Call timeout: base + per_1000_chars * (len(prompt) // 1000), capped
    timeout_base: float = 60.0
    timeout_per_1000_chars: float = 1.0
    timeout_max: float = 120.0
    timeout_shrink_ratio: float = 0.6

    stream_stall_timeout: float = 120.0
    max_cooldown_wait: float = 30.0

    min_call_spacing: Optional[float] = None  # None = derive from pool size
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    max_cooldown_multiplier: int = DEFAULT_MAX_COOLDOWN_MULTIPLIER
    daily_cooldown_seconds: float = DEFAULT_DAILY_COOLDOWN_SECONDS

    rate_limit_backoff: BackoffPair = field(default=RATE_LIMIT_BACKOFF)
    server_fault_backoff: BackoffPair = field(default=SERVER_FAULT_BACKOFF)

    def compute_call_timeout(self, prompt: str) -> float:
        """Timeout that grows with prompt size, capped at ``timeout_max``."""
        scaled = self.timeout_base + (len(prompt) // 1000) * self.timeout_per_1000_chars
        return min(scaled, self.timeout_max)

    @classmethod
    def from_env(cls) -> "OrchestratorSettings":
        """Build settings from environment variables, defaults for anything unset."""
        defaults = cls()
        spacing = _env_float("KEY_MIN_CALL_SPACING", None)
        return cls(
            model=os.getenv("GEMINI_MODEL", defaults.model),
            fallback_model=os.getenv("GEMINI_FALLBACK_MODEL", defaults.fallback_model),
            timeout_base=_env_float("GENERATION_TIMEOUT_BASE", defaults.timeout_base),
            timeout_max=_env_float("GENERATION_TIMEOUT_MAX", defaults.timeout_max),
            stream_stall_timeout=_env_float(
                "STREAM_STALL_TIMEOUT", defaults.stream_stall_timeout
            ),
            max_cooldown_wait=_env_float("MAX_COOLDOWN_WAIT", defaults.max_cooldown_wait),
            min_call_spacing=spacing,
            cooldown_seconds=_env_float("KEY_COOLDOWN_SECONDS", defaults.cooldown_seconds),
            daily_cooldown_seconds=_env_float(
                "KEY_DAILY_COOLDOWN_SECONDS", defaults.daily_cooldown_seconds
            ),
        )


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        lib_logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default


def load_credentials_from_env() -> List[str]:
    """
    Read the configured API keys.

    ``GEMINI_API_KEYS`` (comma-separated) wins; ``GEMINI_API_KEY`` is the
    single-key fallback. Duplicates are removed, order preserved.

    Raises:
        ValueError: No key is configured.
    """
    raw_keys: List[str] = []
    multi_keys = os.getenv("GEMINI_API_KEYS")
    if multi_keys:
        raw_keys = [k.strip() for k in multi_keys.split(",") if k.strip()]
    if not raw_keys:
        single_key = os.getenv("GEMINI_API_KEY", "").strip()
        if single_key:
            raw_keys = [single_key]
    if not raw_keys:
        raise ValueError(
            "No Gemini API keys configured. Set GEMINI_API_KEYS or GEMINI_API_KEY."
        )
    return list(dict.fromkeys(raw_keys))
