# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
LiteLLM-backed provider call layer.

This is the only module that looks at provider exceptions. Everything that
comes out of ``LiteLLMBackend`` is a ``ProviderError`` subclass.
"""

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import litellm
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from ..errors import (
    AuthorizationFailure,
    CallTimeout,
    InvalidRequest,
    ProviderError,
    RateLimited,
    ServerFault,
)
from .provider_interface import GenerationBackend, GenerationRequest

lib_logger = logging.getLogger("seo_llm_core")

# Gemini reports quota exhaustion with these phrases; plain per-minute limits do not
DAILY_QUOTA_MARKERS = ("exceeded your current quota", "billing", "perday", "per day")
INVALID_KEY_MARKERS = ("api key not valid", "api_key_invalid", "api key expired", "leaked")


def is_daily_quota_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in DAILY_QUOTA_MARKERS)


def _mentions_invalid_key(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in INVALID_KEY_MARKERS)


def classify_status(status_code: int, message: str, original: Exception) -> ProviderError:
    """Classify an HTTP status code from the provider."""
    if status_code in (401, 403):
        return AuthorizationFailure(message, original)
    if status_code == 429:
        return RateLimited(message, daily=is_daily_quota_message(message), original=original)
    if status_code == 408:
        return CallTimeout(message, original)
    if status_code >= 500:
        return ServerFault(message, original)
    if status_code == 400 and _mentions_invalid_key(message):
        return AuthorizationFailure(message, original)
    return InvalidRequest(message, original)


def classify_error(e: Exception) -> ProviderError:
    """
    Convert a provider exception into the orchestrators' error taxonomy.

    Unrecognised exceptions become a bare ``ProviderError``, which the
    orchestrators treat as non-retryable.
    """
    if isinstance(e, ProviderError):
        return e
    message = str(e)

    if isinstance(e, (Timeout, asyncio.TimeoutError, httpx.TimeoutException)):
        return CallTimeout(message, e)
    if isinstance(e, (AuthenticationError, PermissionDeniedError)):
        return AuthorizationFailure(message, e)
    if isinstance(e, RateLimitError):
        return RateLimited(message, daily=is_daily_quota_message(message), original=e)
    if isinstance(e, (InternalServerError, ServiceUnavailableError, APIConnectionError)):
        return ServerFault(message, e)
    if isinstance(e, BadRequestError):
        if _mentions_invalid_key(message):
            return AuthorizationFailure(message, e)
        return InvalidRequest(message, e)
    if isinstance(e, httpx.HTTPStatusError):
        return classify_status(e.response.status_code, message, e)
    if isinstance(e, httpx.TransportError):
        return ServerFault(message, e)

    status_code = getattr(e, "status_code", None)
    if isinstance(status_code, int):
        return classify_status(status_code, message, e)
    return ProviderError(message, e)


def _message_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return content or ""


def _delta_text(chunk: Any) -> str:
    try:
        content = chunk.choices[0].delta.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return content or ""


class LiteLLMBackend(GenerationBackend):
    """
    Calls the provider through ``litellm.acompletion``.

    Args:
        litellm_params: Extra keyword arguments merged into every call,
            e.g. ``{"api_base": ...}`` for a regional endpoint.
    """

    def __init__(self, litellm_params: Optional[Dict[str, Any]] = None):
        os.environ.setdefault("LITELLM_LOG", "ERROR")
        litellm.suppress_debug_info = True
        self._litellm_params = litellm_params or {}

    def build_kwargs(self, api_key: str, request: GenerationRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_instruction},
                {"role": "user", "content": request.prompt},
            ],
            "api_key": api_key,
            "max_tokens": request.max_output_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if request.use_external_retrieval:
            kwargs["tools"] = [{"googleSearch": {}}]
        kwargs.update(self._litellm_params)
        return kwargs

    async def complete(self, api_key: str, request: GenerationRequest) -> str:
        try:
            response = await litellm.acompletion(**self.build_kwargs(api_key, request))
        except Exception as e:
            raise classify_error(e) from e
        return _message_text(response)

    async def stream(self, api_key: str, request: GenerationRequest) -> AsyncIterator[str]:
        kwargs = self.build_kwargs(api_key, request)
        kwargs["stream"] = True
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise classify_error(e) from e

        try:
            async for chunk in response:
                text = _delta_text(chunk)
                if text:
                    yield text
        except Exception as e:
            raise classify_error(e) from e
        finally:
            # Release the provider connection on stalls and early exits too
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()
