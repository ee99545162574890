"""Configuration management for the gateway."""

import logging
import os
from typing import Any

import yaml
from dotenv import load_dotenv

from ai_gateway.http_resilience import HttpConfig, create_http_config_from_dict

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AI_GATEWAY_CONFIG"

# Map provider names to environment variable names (first hit wins)
PROVIDER_KEY_MAP: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "gemini": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "workers_ai": ("CLOUDFLARE_API_TOKEN",),
    "ollama": (),
}

# Settings that may be overridden from the environment: (provider, key) -> env var
PROVIDER_ENV_OVERRIDES: dict[tuple[str, str], str] = {
    ("workers_ai", "account_id"): "CLOUDFLARE_ACCOUNT_ID",
    ("ollama", "base_url"): "OLLAMA_BASE_URL",
}


class Configuration:
    """Manages configuration and environment variables for the gateway."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self.config_path = (
            config_path
            or os.getenv(CONFIG_ENV_VAR)
            or os.path.join(os.path.dirname(__file__), "config.yaml")
        )
        self._config = self._load_yaml_config(self.config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            return yaml.safe_load(file) or {}

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def get_provider_config(self, name: str) -> dict[str, Any]:
        """Get one provider's section, with environment overrides applied.

        Returns:
            Provider configuration dictionary (empty if not configured).
        """
        cfg = dict((self._config.get("providers") or {}).get(name) or {})
        for (provider, key), env_var in PROVIDER_ENV_OVERRIDES.items():
            if provider == name and (value := os.getenv(env_var)):
                cfg[key] = value
        return cfg

    def get_api_key(self, name: str) -> str:
        """Get the API key for a provider.

        Environment variables take precedence over an `api_key` entry in the
        provider's YAML section. Providers without credentials (Ollama) and
        unconfigured ones return an empty string; the caller decides whether
        that is worth a warning.
        """
        if name not in PROVIDER_KEY_MAP:
            raise ValueError(f"Unknown provider '{name}' - no API key mapping found")

        for env_key in PROVIDER_KEY_MAP[name]:
            if api_key := os.getenv(env_key):
                return api_key
        return str(self.get_provider_config(name).get("api_key") or "")

    def requires_api_key(self, name: str) -> bool:
        return bool(PROVIDER_KEY_MAP.get(name))

    def get_http_config(self) -> HttpConfig:
        """Get HTTP transport settings (timeouts, pooling, opt-in retries)."""
        return create_http_config_from_dict(self._config)

    def get_workers_ai_config(self) -> dict[str, Any]:
        """Get Workers AI settings (account, triage model and cache TTL)."""
        return self.get_provider_config("workers_ai")

    def get_cache_config(self) -> dict[str, Any]:
        """Get key-value cache configuration from YAML.

        Returns:
            Cache configuration dictionary.
        """
        return self._config.get("cache") or {}

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        return self._config.get("logging") or {}

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML.

        Returns:
            Server configuration dictionary.
        """
        return self._config.get("server") or {}
