"""LLM provider factory for creating chat models."""

import logging

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from wellness_companion.config.settings import settings

logger = logging.getLogger(__name__)

WORKERS_AI_BASE_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/v1"


class LLMFactory:
    """Factory for creating LLM instances per model provider."""

    @staticmethod
    def create(provider: str = "openai", **kwargs) -> BaseChatModel:
        """Create a chat model for the given provider.

        Args:
            provider: "openai" or "workers-ai"
            **kwargs: Extra model parameters (temperature, max_tokens, ...)

        Raises:
            ValueError: If the provider is unknown or no credentials are configured.
        """
        if provider == "workers-ai":
            if settings.WORKERS_AI_ACCOUNT_ID and settings.WORKERS_AI_API_TOKEN:
                return LLMFactory._create_workers_ai(**kwargs)
            logger.warning("Workers AI credentials not configured, falling back to OpenAI")
            return LLMFactory._create_openai(**kwargs)
        if provider == "openai":
            return LLMFactory._create_openai(**kwargs)
        raise ValueError(f"Unsupported model provider: {provider}")

    @staticmethod
    def _create_openai(**kwargs) -> ChatOpenAI:
        """Create OpenAI model."""
        if not settings.OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY not set")
        kwargs.setdefault("temperature", 0.3)
        kwargs.setdefault("max_tokens", 1024)
        return ChatOpenAI(
            model=settings.OPENAI_MODEL,
            api_key=settings.OPENAI_API_KEY,
            **kwargs,
        )

    @staticmethod
    def _create_workers_ai(**kwargs) -> ChatOpenAI:
        """Create a Workers AI model through its OpenAI-compatible endpoint."""
        kwargs.setdefault("temperature", 0.3)
        kwargs.setdefault("max_tokens", 1024)
        return ChatOpenAI(
            model=settings.WORKERS_AI_MODEL,
            api_key=settings.WORKERS_AI_API_TOKEN,
            base_url=WORKERS_AI_BASE_URL.format(account_id=settings.WORKERS_AI_ACCOUNT_ID),
            **kwargs,
        )


def create_model(provider: str | None = None, **kwargs) -> BaseChatModel:
    """Create a chat model, defaulting to the configured provider."""
    return LLMFactory.create(provider or settings.DEFAULT_MODEL_PROVIDER, **kwargs)
