# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error types for the generation orchestrators.

Two families live here:

- ``ProviderError`` and its subclasses classify a single failed provider
  attempt. They are raised by the provider layer and consumed by the
  orchestrators, which retry, back off or update pool state.
- ``OrchestrationError`` and its subclasses are the terminal conditions that
  reach callers once the orchestrators give up.
"""

from typing import Optional


# =============================================================================
# PROVIDER ATTEMPT FAILURES
# =============================================================================


class ProviderError(Exception):
    """Base class for a classified failure of one provider call."""

    error_type = "provider_error"

    def __init__(self, message: str = "", original: Optional[BaseException] = None):
        super().__init__(message or self.error_type)
        self.original = original


class AuthorizationFailure(ProviderError):
    """The credential is revoked, leaked or forbidden. Never retried with it."""

    error_type = "authorization"


class RateLimited(ProviderError):
    """
    The credential hit a rate limit.

    ``daily`` is True when the provider reports the daily quota as used up,
    which keeps the credential unusable until the external reset.
    """

    error_type = "rate_limit"

    def __init__(
        self,
        message: str = "",
        daily: bool = False,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message, original)
        self.daily = daily


class ServerFault(ProviderError):
    """Provider-side 5xx-equivalent or connection failure."""

    error_type = "server_error"


class CallTimeout(ProviderError):
    """The call exceeded its computed timeout."""

    error_type = "timeout"


class StreamStalled(ProviderError):
    """A stream stopped producing chunks for longer than the stall ceiling."""

    error_type = "stream_stalled"


class MalformedStructuredOutput(ProviderError):
    """The response could not be repaired into valid JSON."""

    error_type = "malformed_json"

    def __init__(self, message: str = "", raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class InvalidRequest(ProviderError):
    """The provider rejected the request itself. Retrying cannot help."""

    error_type = "invalid_request"


# =============================================================================
# TERMINAL CONDITIONS
# =============================================================================


class OrchestrationError(Exception):
    """
    Base class for the conditions that propagate to callers.

    All of them are operational failures: the same request may well succeed
    once the pool recovers, so ``retryable`` is always True.
    """

    condition = "orchestration_error"
    retryable = True


class AllCredentialsDeadError(OrchestrationError):
    condition = "all_credentials_dead"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "All API keys are blocked (403 Forbidden). Replace your API keys, "
            "they may have been leaked or revoked."
        )


class DailyQuotaExhaustedError(OrchestrationError):
    condition = "daily_quota_exhausted"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Daily quota exhausted on every API key. Wait for the quota reset "
            "or add keys from different Google Cloud projects."
        )


class AttemptsExhaustedError(OrchestrationError):
    """Every attempt failed; ``last_error`` is the last classified failure."""

    condition = "attempts_exhausted"

    def __init__(
        self, attempts: int, last_error: Optional[BaseException] = None
    ):
        self.attempts = attempts
        self.last_error = last_error
        if last_error is None:
            reason = "no attempt could be made"
        else:
            kind = getattr(last_error, "error_type", type(last_error).__name__)
            reason = f"last failure: {kind}: {last_error}"
        super().__init__(
            f"Generation failed after {attempts} attempt(s) ({reason}). "
            "Wait a minute and retry."
        )


class StreamInterruptedError(OrchestrationError):
    """A stream failed after output was already delivered to the caller."""

    condition = "stream_interrupted"

    def __init__(self, cause: BaseException, chunks_emitted: int):
        self.cause = cause
        self.chunks_emitted = chunks_emitted
        kind = getattr(cause, "error_type", type(cause).__name__)
        super().__init__(
            f"Stream interrupted after {chunks_emitted} chunk(s) ({kind}: {cause}). "
            "Restart the generation."
        )
