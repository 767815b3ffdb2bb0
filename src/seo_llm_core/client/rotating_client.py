# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Process-wide entry point for generation calls.

GenerationClient owns the one CredentialPool of the process together with
the backend and both orchestrators. Build it once at startup and share it;
every wizard step or content routine calls ``generate`` or ``stream`` on the
same instance.
"""

import dataclasses
import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional

from ..config import (
    GenerationOptions,
    OrchestratorSettings,
    StreamOptions,
    load_credentials_from_env,
)
from ..credential_pool import CredentialPool
from ..errors import MalformedStructuredOutput
from ..providers import GenerationBackend, LiteLLMBackend
from .executor import RequestOrchestrator
from .streaming import StreamOrchestrator

lib_logger = logging.getLogger("seo_llm_core")


class GenerationClient:
    """
    Rotates API keys across non-streaming and streaming generate calls.
    """

    def __init__(
        self,
        api_keys: Iterable[str],
        settings: Optional[OrchestratorSettings] = None,
        backend: Optional[GenerationBackend] = None,
    ):
        self.settings = settings or OrchestratorSettings()
        self.pool = CredentialPool(
            api_keys,
            min_call_spacing=self.settings.min_call_spacing,
            cooldown_seconds=self.settings.cooldown_seconds,
            max_cooldown_multiplier=self.settings.max_cooldown_multiplier,
            daily_cooldown_seconds=self.settings.daily_cooldown_seconds,
        )
        self.backend = backend or LiteLLMBackend()
        self.requests = RequestOrchestrator(self.pool, self.backend, self.settings)
        self.streams = StreamOrchestrator(self.pool, self.backend, self.settings)

    @classmethod
    def from_env(cls, backend: Optional[GenerationBackend] = None) -> "GenerationClient":
        """Build a client from ``GEMINI_API_KEYS`` / ``GEMINI_API_KEY`` and settings env vars."""
        return cls(
            load_credentials_from_env(),
            settings=OrchestratorSettings.from_env(),
            backend=backend,
        )

    async def generate(
        self,
        system_instruction: str,
        user_prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> str:
        return await self.requests.generate(system_instruction, user_prompt, options)

    async def generate_json(
        self,
        system_instruction: str,
        user_prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> Any:
        """Generate in JSON mode and return the parsed value."""
        options = dataclasses.replace(options or GenerationOptions(), json_mode=True)
        text = await self.requests.generate(system_instruction, user_prompt, options)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedStructuredOutput(str(e), raw_text=text) from e

    def stream(
        self,
        system_instruction: str,
        user_prompt: str,
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[str]:
        return self.streams.generate(system_instruction, user_prompt, options)

    def pool_stats(self) -> Dict[str, Any]:
        """Pool summary plus per-key statistics."""
        keys = self.pool.get_stats()
        return {
            "pool_size": self.pool.size,
            "alive_count": self.pool.alive_count,
            "total_calls": sum(k["call_count"] for k in keys),
            "total_rate_limit_errors": sum(k["rate_limit_errors"] for k in keys),
            "active_cooling": sum(1 for k in keys if k["is_cooling"]),
            "daily_exhausted": sum(1 for k in keys if k["daily_exhausted"]),
            "all_daily_exhausted": self.pool.all_daily_exhausted,
            "keys": keys,
        }

    async def reset_daily_exhaustion(self) -> None:
        await self.pool.reset_daily_exhaustion()
