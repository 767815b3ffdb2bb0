# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential acquisition and failure handling shared by both orchestrators.
"""

import asyncio
import logging
from typing import Optional

from ..backoff import backoff_delay
from ..config import OrchestratorSettings
from ..credential_pool import CredentialHandle, CredentialPool
from ..errors import (
    AllCredentialsDeadError,
    AuthorizationFailure,
    CallTimeout,
    DailyQuotaExhaustedError,
    MalformedStructuredOutput,
    ProviderError,
    RateLimited,
    ServerFault,
    StreamStalled,
)
from ..failure_logger import log_failure
from ..providers import GenerationBackend
from .types import ErrorAction, RetryAttempt

lib_logger = logging.getLogger("seo_llm_core")


def shrink_prompt(prompt: str, ratio: float) -> str:
    """Keep the leading ``ratio`` share of the prompt, dropping the tail."""
    return prompt[: int(len(prompt) * ratio)]


class BaseOrchestrator:
    """
    Retry loop plumbing over a shared ``CredentialPool``.

    Subclasses drive one generate operation; this class owns the steps that
    both share: picking a credential, waiting out its spacing and cooldown,
    and turning a classified failure into pool state changes and a next
    action.
    """

    log_name = "orchestrator"

    def __init__(
        self,
        pool: CredentialPool,
        backend: GenerationBackend,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self._pool = pool
        self._backend = backend
        self._settings = settings or OrchestratorSettings()

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def max_attempts(self) -> int:
        return self._pool.size + 1

    def _ensure_pool_usable(self) -> None:
        """Fail fast instead of looping over a pool that cannot serve."""
        if self._pool.alive_count == 0:
            raise AllCredentialsDeadError()
        if self._pool.all_daily_exhausted:
            raise DailyQuotaExhaustedError()

    async def _acquire(self, attempt: RetryAttempt) -> CredentialHandle:
        """Pick the next credential and wait until it may be used."""
        handle = await self._pool.next()
        attempt.credential_index = handle.index

        spacing_wait = await self._pool.reserve_call_slot(handle.index)
        if spacing_wait > 0:
            await asyncio.sleep(spacing_wait)

        cooldown = self._pool.cooldown_wait(handle.index)
        if cooldown > 0:
            capped = min(cooldown, self._settings.max_cooldown_wait)
            lib_logger.info(
                f"[{self.log_name}] Key {handle.display} cooling down, waiting "
                f"{capped:.1f}s ({attempt.label})"
            )
            await asyncio.sleep(capped)
        return handle

    async def _record_failure(
        self, error: ProviderError, attempt: RetryAttempt, handle: CredentialHandle
    ) -> None:
        """Log the failure and apply its effect on the credential's health."""
        log_failure(
            credential=handle.display,
            model=self._settings.model,
            attempt=attempt.number + 1,
            error=error,
            prompt_chars=len(attempt.prompt),
        )
        if isinstance(error, AuthorizationFailure):
            await self._pool.mark_dead(handle.index)
        elif isinstance(error, RateLimited):
            await self._pool.mark_cooldown(handle.index, is_daily_quota=error.daily)

    async def _handle_failure(
        self, error: ProviderError, attempt: RetryAttempt, handle: CredentialHandle
    ) -> ErrorAction:
        """
        Apply a failure to the pool and decide what the loop does next.

        Raises:
            AllCredentialsDeadError: The last alive key was just disabled.
            DailyQuotaExhaustedError: Every key has used its daily quota.
        """
        await self._record_failure(error, attempt, handle)

        if isinstance(error, AuthorizationFailure):
            if self._pool.alive_count == 0:
                raise AllCredentialsDeadError() from error
            lib_logger.warning(
                f"[{self.log_name}] Key {handle.display} is dead. Rotating immediately ({attempt.label})"
            )
            return ErrorAction.ROTATE

        if isinstance(error, RateLimited):
            if self._pool.all_daily_exhausted:
                raise DailyQuotaExhaustedError() from error
            delay = backoff_delay(attempt.number, *self._settings.rate_limit_backoff)
            lib_logger.warning(
                f"[{self.log_name}] Key {handle.display} hit rate limit"
                f"{' (daily quota)' if error.daily else ''}. Backoff {delay:.2f}s "
                f"before next key ({attempt.label})"
            )
            await asyncio.sleep(delay)
            return ErrorAction.ROTATE

        if isinstance(error, ServerFault):
            delay = backoff_delay(attempt.number, *self._settings.server_fault_backoff)
            lib_logger.warning(
                f"[{self.log_name}] Server error on key {handle.display}. Backoff "
                f"{delay:.2f}s ({attempt.label})"
            )
            await asyncio.sleep(delay)
            return ErrorAction.ROTATE

        if isinstance(error, StreamStalled):
            lib_logger.warning(
                f"[{self.log_name}] Stream stalled on key {handle.display} before any output. "
                f"Rotating ({attempt.label})"
            )
            return ErrorAction.ROTATE

        if isinstance(error, CallTimeout):
            lib_logger.warning(
                f"[{self.log_name}] Timeout on key {handle.display}. Retrying with a shorter "
                f"prompt ({attempt.label})"
            )
            return ErrorAction.SHRINK_PROMPT

        if isinstance(error, MalformedStructuredOutput):
            lib_logger.warning(
                f"[{self.log_name}] Invalid JSON from key {handle.display} ({attempt.label})"
            )
            return ErrorAction.FALLBACK

        lib_logger.error(
            f"[{self.log_name}] Non-retryable {error.error_type} on key {handle.display}: {error}"
        )
        return ErrorAction.FAIL
