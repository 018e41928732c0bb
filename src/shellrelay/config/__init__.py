"""Configuration management for shellrelay.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides.
"""

from shellrelay.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
