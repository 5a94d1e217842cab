from typing import TYPE_CHECKING, Any

from ..errors import UnsupportedProviderError
from .base import LLMProvider
from .providers import OllamaProvider

if TYPE_CHECKING:
    from ..config import AppConfig

SUPPORTED_PROVIDERS = ("ollama",)

# Known provider names that have no implementation yet
_PLANNED_PROVIDERS = ("openai", "eino")


def create_llm_provider(provider: str, **config: Any) -> LLMProvider:
    """Create an LLM provider instance.

    This factory function hides the instantiation logic for different providers.

    Args:
        provider: Provider type ('ollama')
        **config: Provider-specific configuration
            For Ollama:
                - base_url: str (default: 'http://localhost:11434')
                - timeout_seconds: float (default: 30)
                - client: httpx.AsyncClient | None

    Returns:
        Initialized LLM provider instance

    Raises:
        UnsupportedProviderError: If provider type is not supported

    Examples:
        >>> provider = create_llm_provider(
        ...     "ollama",
        ...     base_url="http://localhost:11434",
        ...     timeout_seconds=30
        ... )
    """
    provider_lower = provider.strip().lower()

    if provider_lower == "ollama":
        return OllamaProvider(**config)

    if provider_lower in _PLANNED_PROVIDERS:
        raise UnsupportedProviderError(
            f"{provider_lower} provider not yet implemented"
        )

    raise UnsupportedProviderError(
        f"Unsupported provider: {provider}. "
        f"Supported providers: {', '.join(repr(p) for p in SUPPORTED_PROVIDERS)}"
    )


def create_llm_provider_from_config(config: "AppConfig", **overrides: Any) -> LLMProvider:
    """Create the configured provider from application configuration."""
    llm = config.llm
    options: dict[str, Any] = {"timeout_seconds": llm.timeout_seconds}
    if llm.provider.strip().lower() == "ollama":
        options["base_url"] = llm.ollama.base_url
    options.update(overrides)
    return create_llm_provider(llm.provider, **options)
