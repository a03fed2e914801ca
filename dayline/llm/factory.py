"""
Provider factory
Chooses the provider variant from llm.provider
"""

from typing import Optional

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.errors import ConfigurationError
from dayline.core.logger import get_logger
from dayline.llm.backend import ManagedBackendProvider
from dayline.llm.base import LLMProvider
from dayline.llm.gemini import CloudVisionProvider
from dayline.llm.local import LocalVisionProvider

logger = get_logger(__name__)

PROVIDERS = {
    "gemini": CloudVisionProvider,
    "local": LocalVisionProvider,
    "backend": ManagedBackendProvider,
}


def create_provider(config: Optional[ConfigLoader] = None) -> LLMProvider:
    """
    Build the configured provider

    Raises:
        ConfigurationError: Unknown provider name or missing credentials
    """
    config = config or get_config()
    name = str(config.get("llm.provider", "gemini")).strip().lower()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown LLM provider '{name}', expected one of: {', '.join(PROVIDERS)}"
        )
    provider = provider_cls.from_config(config)
    logger.info(f"Using LLM provider: {name}")
    return provider
