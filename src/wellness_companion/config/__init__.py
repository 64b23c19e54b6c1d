"""Configuration module for Wellness Companion."""

from wellness_companion.config.settings import Settings, settings
from wellness_companion.config.llm_factory import LLMFactory, create_model

__all__ = ["Settings", "settings", "LLMFactory", "create_model"]
