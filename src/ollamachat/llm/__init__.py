from .base import LLMProvider
from .factory import SUPPORTED_PROVIDERS, create_llm_provider, create_llm_provider_from_config
from .models import ModelInfo, QueryOptions, StreamChunk, StreamFrame
from .providers import OllamaProvider

__all__ = [
    "LLMProvider",
    "create_llm_provider",
    "create_llm_provider_from_config",
    "SUPPORTED_PROVIDERS",
    "ModelInfo",
    "QueryOptions",
    "StreamChunk",
    "StreamFrame",
    "OllamaProvider",
]
