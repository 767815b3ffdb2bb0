# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Streaming generation with credential rotation and retry.

A stream can only be retried while nothing has reached the caller. Once a
chunk has been yielded, any failure ends the stream with
``StreamInterruptedError`` and restarting is the caller's decision.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..config import StreamOptions
from ..errors import (
    AttemptsExhaustedError,
    ProviderError,
    StreamInterruptedError,
    StreamStalled,
)
from ..providers import GenerationRequest
from .base import BaseOrchestrator, shrink_prompt
from .types import ErrorAction, RetryAttempt

lib_logger = logging.getLogger("seo_llm_core")


async def _close_stream(stream: AsyncIterator[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamOrchestrator(BaseOrchestrator):
    """Runs streaming generate calls against the shared pool."""

    log_name = "stream"

    async def generate(
        self,
        system_instruction: str,
        user_prompt: str,
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[str]:
        """
        Generate the response as text chunks.

        This is an async generator: finite, single-consumer and not
        restartable. Each wait for the next chunk is bounded by the stall
        ceiling in the settings.

        Yields:
            Non-empty text chunks in arrival order

        Raises:
            AllCredentialsDeadError: Every key is permanently disabled.
            DailyQuotaExhaustedError: Every key has used its daily quota.
            AttemptsExhaustedError: All attempts failed before any output.
            StreamInterruptedError: A failure after output had started.
        """
        options = options or StreamOptions()
        self._ensure_pool_usable()

        stall_timeout = self._settings.stream_stall_timeout
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
                json_mode=False,
                use_external_retrieval=options.use_external_retrieval,
            )

            chunks_emitted = 0
            stream = self._backend.stream(handle.api_key, request)
            try:
                while True:
                    try:
                        chunk = await asyncio.wait_for(stream.__anext__(), stall_timeout)
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError as e:
                        raise StreamStalled(
                            f"No chunk received for {stall_timeout:.1f}s"
                        ) from e
                    if not chunk:
                        continue
                    chunks_emitted += 1
                    yield chunk
            except ProviderError as e:
                last_error = e
                if chunks_emitted > 0:
                    await self._record_failure(e, attempt, handle)
                    lib_logger.error(
                        f"[{self.log_name}] {e.error_type} on key {handle.display} after "
                        f"{chunks_emitted} chunk(s); not retrying"
                    )
                    raise StreamInterruptedError(e, chunks_emitted) from e

                action = await self._handle_failure(e, attempt, handle)
                if action is ErrorAction.FAIL:
                    raise
                if action is ErrorAction.SHRINK_PROMPT:
                    prompt = shrink_prompt(user_prompt, self._settings.timeout_shrink_ratio)
                continue
            finally:
                await _close_stream(stream)

            await self._pool.mark_success(handle.index)
            lib_logger.info(
                f"[{self.log_name}] Stream finished on key {handle.display} "
                f"({chunks_emitted} chunk(s))"
            )
            return

        raise AttemptsExhaustedError(max_attempts, last_error)
