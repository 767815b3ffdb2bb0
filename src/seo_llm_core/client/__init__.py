from .executor import RequestOrchestrator
from .rotating_client import GenerationClient
from .streaming import StreamOrchestrator
from .types import ErrorAction, RetryAttempt

__all__ = [
    "GenerationClient",
    "RequestOrchestrator",
    "StreamOrchestrator",
    "ErrorAction",
    "RetryAttempt",
]
