# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Non-streaming generation with credential rotation and retry.

The RequestOrchestrator drives one "generate and return complete text"
operation: rotate credentials, back off per failure class, shrink the prompt
after a timeout, repair JSON responses, and fall back to a more deterministic
model configuration when JSON stays broken on the final attempt.
"""

import asyncio
import json
import logging
from typing import Optional

from ..config import JSON_ONLY_INSTRUCTION, GenerationOptions
from ..credential_pool import CredentialHandle
from ..errors import (
    AttemptsExhaustedError,
    CallTimeout,
    MalformedStructuredOutput,
    ProviderError,
)
from ..providers import GenerationRequest
from ..response_repair import repair_json_text
from .base import BaseOrchestrator, shrink_prompt
from .types import ErrorAction, RetryAttempt

lib_logger = logging.getLogger("seo_llm_core")


class RequestOrchestrator(BaseOrchestrator):
    """Runs non-streaming generate calls against the shared pool."""

    log_name = "generate"

    async def generate(
        self,
        system_instruction: str,
        user_prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> str:
        """
        Generate the complete response text.

        Args:
            system_instruction: System prompt for the model
            user_prompt: User prompt; may be shortened after a timeout
            options: Per-call options; defaults to JSON mode

        Returns:
            The response text, repaired into valid JSON in JSON mode

        Raises:
            AllCredentialsDeadError: Every key is permanently disabled.
            DailyQuotaExhaustedError: Every key has used its daily quota.
            AttemptsExhaustedError: All attempts failed.
            InvalidRequest: The provider rejected the request itself.
        """
        options = options or GenerationOptions()
        self._ensure_pool_usable()

        timeout = self._settings.compute_call_timeout(user_prompt)
        max_attempts = self.max_attempts
        prompt = user_prompt
        last_error: Optional[ProviderError] = None

        for number in range(max_attempts):
            attempt = RetryAttempt(
                number=number,
                max_attempts=max_attempts,
                prompt=prompt,
                previous_error=last_error,
            )
            handle = await self._acquire(attempt)
            request = GenerationRequest(
                model=self._settings.model,
                system_instruction=system_instruction,
                prompt=attempt.prompt,
                temperature=options.temperature,
                max_output_tokens=options.max_output_tokens,
                json_mode=options.json_mode,
                use_external_retrieval=options.use_external_retrieval,
            )

            try:
                text = await self._call(handle, request, timeout)
                if options.json_mode:
                    text = self._validated_json(text, handle)
            except ProviderError as e:
                last_error = e
                action = await self._handle_failure(e, attempt, handle)
                if action is ErrorAction.FAIL:
                    raise
                if action is ErrorAction.SHRINK_PROMPT:
                    prompt = shrink_prompt(user_prompt, self._settings.timeout_shrink_ratio)
                    lib_logger.info(
                        f"[{self.log_name}] Prompt shrunk from {len(user_prompt)} to {len(prompt)} chars"
                    )
                elif action is ErrorAction.FALLBACK and attempt.is_final:
                    return await self._fallback(handle, system_instruction, attempt, options, timeout)
                continue

            await self._pool.mark_success(handle.index)
            return text

        raise AttemptsExhaustedError(max_attempts, last_error)

    async def _call(
        self, handle: CredentialHandle, request: GenerationRequest, timeout: float
    ) -> str:
        try:
            return await asyncio.wait_for(
                self._backend.complete(handle.api_key, request), timeout
            )
        except asyncio.TimeoutError as e:
            raise CallTimeout(f"No response within {timeout:.1f}s") from e

    def _validated_json(self, text: str, handle: CredentialHandle) -> str:
        repaired = repair_json_text(text)
        try:
            json.loads(repaired)
        except (json.JSONDecodeError, ValueError) as e:
            lib_logger.warning(
                f"[{self.log_name}] JSON parse failed on key {handle.display}. "
                f"Raw response (first 500 chars): {text[:500]}"
            )
            raise MalformedStructuredOutput(str(e), raw_text=text) from e
        return repaired

    async def _fallback(
        self,
        handle: CredentialHandle,
        system_instruction: str,
        attempt: RetryAttempt,
        options: GenerationOptions,
        timeout: float,
    ) -> str:
        """
        One extra call with the fallback model after the final attempt
        returned broken JSON.

        Uses the same credential without rotation or cooldown checks; only
        the per-key spacing is respected.
        """
        lib_logger.warning(
            f"[{self.log_name}] Final attempt returned invalid JSON. Trying fallback model "
            f"{self._settings.fallback_model} on key {handle.display}"
        )
        spacing_wait = await self._pool.reserve_call_slot(handle.index)
        if spacing_wait > 0:
            await asyncio.sleep(spacing_wait)

        request = GenerationRequest(
            model=self._settings.fallback_model,
            system_instruction=system_instruction,
            prompt=attempt.prompt + JSON_ONLY_INSTRUCTION,
            temperature=self._settings.fallback_temperature,
            max_output_tokens=options.max_output_tokens,
            json_mode=True,
        )
        try:
            text = self._validated_json(await self._call(handle, request, timeout), handle)
        except ProviderError as e:
            lib_logger.error(f"[{self.log_name}] Fallback model also failed: {e}")
            await self._record_failure(e, attempt, handle)
            raise AttemptsExhaustedError(attempt.max_attempts + 1, e) from e

        await self._pool.mark_success(handle.index)
        return text
