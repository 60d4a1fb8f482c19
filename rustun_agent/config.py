"""Configuration management for the Rustun agent."""

from __future__ import annotations

import ipaddress
import logging
import os
from typing import Any, cast

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RUSTUN_AGENT_CONFIG"

# Provider names mapped to the environment variable holding their API key
PROVIDER_KEY_MAP = {
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

DEFAULT_TEMPERATURE = 0.7


class Configuration:
    """YAML-backed configuration with environment overrides for secrets."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._default_config = self._load_yaml_config(self._default_config_path())

        override_path = config_path or os.getenv(CONFIG_ENV_VAR)
        if override_path:
            override = self._load_yaml_config(override_path)
            self._current_config = self._deep_merge(self._default_config, override)
            logger.info("Loaded configuration overrides from %s", override_path)
        else:
            self._current_config = dict(self._default_config)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _default_config_path() -> str:
        return os.path.join(os.path.dirname(__file__), "config.yaml")

    @staticmethod
    def _load_yaml_config(path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(path) as file:
            config = yaml.safe_load(file) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Configuration file {path} must contain a dictionary")
            return cast(dict[str, Any], config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._current_config

    @property
    def active_provider(self) -> str:
        """Name of the active LLM provider."""
        return self._current_config.get("llm", {}).get("active", "openai")

    @property
    def llm_api_key(self) -> str:
        """Get the API key for the active LLM provider.

        Raises:
            ValueError: If the provider is unknown or the key is not set.
        """
        active_provider = self.active_provider

        env_key = PROVIDER_KEY_MAP.get(active_provider)
        if not env_key:
            raise ValueError(f"Unknown provider '{active_provider}' - no API key mapping found")

        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(
                f"API key '{env_key}' not found in environment variables for provider '{active_provider}'"
            )

        return api_key

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration with provider defaults filled in.

        Returns:
            Provider configuration dictionary, always containing
            ``base_url``, ``model`` and ``temperature``.
        """
        llm_config = self._current_config.get("llm", {})
        active_provider = self.active_provider
        providers = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(f"Active provider '{active_provider}' not found in providers config")

        provider_config = dict(providers[active_provider] or {})

        if active_provider == "deepseek":
            provider_config.setdefault("model", "deepseek-chat")
            provider_config.setdefault("base_url", "https://api.deepseek.com/v1")
        else:
            provider_config.setdefault("model", "gpt-4o-mini")
            provider_config.setdefault("base_url", "https://api.openai.com/v1")
        provider_config.setdefault("temperature", DEFAULT_TEMPERATURE)

        return provider_config

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration."""
        return self._current_config.get("chat", {}).get("service", {})

    def get_max_tool_hops(self) -> int:
        """Get the maximum number of model round trips per invocation (default: 10)."""
        max_hops = self.get_chat_service_config().get("max_tool_hops", 10)

        if not isinstance(max_hops, int) or isinstance(max_hops, bool) or max_hops < 1:
            raise ValueError("max_tool_hops must be a positive integer")

        return max_hops

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self._current_config.get("logging", {})

    def get_connection_pool_config(self) -> dict[str, Any]:
        """Get HTTP connection pool configuration with validated defaults."""
        pool_config = self._current_config.get("connection_pool", {})

        result = {
            "max_connections": pool_config.get("max_connections", 20),
            "max_keepalive_connections": pool_config.get("max_keepalive_connections", 10),
            "keepalive_expiry_seconds": pool_config.get("keepalive_expiry_seconds", 30.0),
            "request_timeout_seconds": pool_config.get("request_timeout_seconds", 120.0),
        }

        if result["max_connections"] < 1:
            raise ValueError("max_connections must be at least 1")
        if result["request_timeout_seconds"] <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        return result

    def get_storage_config(self) -> dict[str, Any]:
        """Get route storage configuration.

        The primary routes file falls back to ``routes_file_fallback`` when it
        does not exist.
        """
        storage = dict(self._current_config.get("storage", {}))
        storage.setdefault("type", "file")

        file_config = dict(storage.get("file", {}))
        routes_file = file_config.get("routes_file", "/etc/rustun/routes.json")
        fallback = file_config.get("routes_file_fallback", "./routes.json")
        if storage["type"] == "file" and not os.path.exists(routes_file):
            routes_file = fallback
        file_config["routes_file"] = routes_file
        file_config["routes_file_fallback"] = fallback
        storage["file"] = file_config

        sqlite_config = dict(storage.get("sqlite", {}))
        sqlite_config.setdefault("db_path", "./routes.db")
        storage["sqlite"] = sqlite_config

        return storage

    def get_ipam_config(self) -> dict[str, str]:
        """Get address allocation configuration."""
        ipam = self._current_config.get("ipam", {})

        result = {
            "network": ipam.get("network", "10.12.0.0/16"),
            "gateway": ipam.get("gateway", "10.12.0.1"),
            "start_ip": ipam.get("start_ip", "10.12.0.10"),
            "mask": ipam.get("mask", "255.255.0.0"),
        }

        try:
            network = ipaddress.IPv4Network(result["network"])
            ipaddress.IPv4Address(result["gateway"])
            start = ipaddress.IPv4Address(result["start_ip"])
        except ValueError as e:
            raise ValueError(f"Invalid ipam configuration: {e}") from e
        if start not in network:
            raise ValueError("ipam.start_ip must be inside ipam.network")

        return result
