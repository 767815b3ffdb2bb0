from .provider_interface import GenerationBackend, GenerationRequest
from .litellm_backend import LiteLLMBackend, classify_error

__all__ = ["GenerationBackend", "GenerationRequest", "LiteLLMBackend", "classify_error"]
