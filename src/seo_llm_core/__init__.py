import logging

from .backoff import backoff_delay
from .client import GenerationClient, RequestOrchestrator, StreamOrchestrator
from .config import (
    GenerationOptions,
    OrchestratorSettings,
    StreamOptions,
    load_credentials_from_env,
)
from .credential_pool import CredentialHandle, CredentialPool, CredentialState
from .errors import (
    AllCredentialsDeadError,
    AttemptsExhaustedError,
    DailyQuotaExhaustedError,
    OrchestrationError,
    StreamInterruptedError,
)
from .response_repair import parse_json_response, repair_json_text

lib_logger = logging.getLogger("seo_llm_core")
if not lib_logger.handlers:
    lib_logger.addHandler(logging.NullHandler())

__all__ = [
    "GenerationClient",
    "RequestOrchestrator",
    "StreamOrchestrator",
    "GenerationOptions",
    "StreamOptions",
    "OrchestratorSettings",
    "load_credentials_from_env",
    "CredentialPool",
    "CredentialHandle",
    "CredentialState",
    "OrchestrationError",
    "AllCredentialsDeadError",
    "DailyQuotaExhaustedError",
    "AttemptsExhaustedError",
    "StreamInterruptedError",
    "backoff_delay",
    "repair_json_text",
    "parse_json_response",
]
