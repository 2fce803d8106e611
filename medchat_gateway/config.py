"""Configuration management for the medical chat gateway."""

import logging
import os
from typing import Any

import yaml
from dotenv import load_dotenv

from .llm.models import DecodeMode, GenerationParams, RelayOptions
from .llm.rate_limiting import RateLimitConfig
from .responses import FALLBACK_MESSAGES, WELCOME_MESSAGE

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Manages configuration and environment variables for the gateway."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys and endpoint overrides
        self._config = self._load_yaml_config(config_path or DEFAULT_CONFIG_PATH)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def active_provider(self) -> str:
        return self._config.get("llm", {}).get("active", "ollama")

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration with environment overrides.

        LLM_DECODING overrides the decoding of any provider. OLLAMA_BASE_URL
        and OLLAMA_MODEL apply only while the active provider is ollama.

        Returns:
            Active LLM provider configuration dictionary.

        Raises:
            ValueError: If the provider is missing or incompletely configured.
        """
        providers = self._config.get("llm", {}).get("providers", {})
        active_provider = self.active_provider

        if active_provider not in providers:
            raise ValueError(
                f"Active provider '{active_provider}' not found in providers config"
            )

        # Copy so overrides never mutate the loaded YAML
        llm_config = {**providers[active_provider]}
        overrides = {"decoding": os.getenv("LLM_DECODING")}
        if active_provider == "ollama":
            overrides["base_url"] = os.getenv("OLLAMA_BASE_URL")
            overrides["model"] = os.getenv("OLLAMA_MODEL")
        llm_config.update({k: v for k, v in overrides.items() if v})

        for key in ("base_url", "model", "decoding"):
            if not llm_config.get(key):
                raise ValueError(
                    f"llm.providers.{active_provider}.{key} must be explicitly "
                    "configured in config.yaml"
                )

        valid_modes = [mode.value for mode in DecodeMode]
        if llm_config["decoding"] not in valid_modes:
            raise ValueError(
                f"llm.providers.{active_provider}.decoding must be one of: "
                f"{valid_modes}"
            )

        return llm_config

    @property
    def llm_api_key(self) -> str | None:
        """Get the API key for the active LLM provider.

        Local Ollama needs no key; SSE providers read LLM_API_KEY, falling
        back to the provider-specific variable.

        Raises:
            ValueError: If an SSE provider has no key in the environment.
        """
        if self.get_llm_config()["decoding"] == DecodeMode.NDJSON.value:
            return os.getenv("LLM_API_KEY") or None

        env_key = f"{self.active_provider.upper()}_API_KEY"
        api_key = os.getenv("LLM_API_KEY") or os.getenv(env_key)
        if not api_key:
            raise ValueError(
                f"API key 'LLM_API_KEY' or '{env_key}' not found in environment "
                f"variables for provider '{self.active_provider}'"
            )
        return api_key

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client configuration for the active LLM provider.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self.get_llm_config().get("http_client", {})

        required_keys = [
            "max_connections", "max_keepalive", "keepalive_expiry",
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout",
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured "
                    f"for provider '{self.active_provider}' in config.yaml"
                )

        if http_config["max_connections"] < 1:
            raise ValueError("http_client.max_connections must be at least 1")
        if http_config["max_keepalive"] > http_config["max_connections"]:
            raise ValueError("http_client.max_keepalive must be <= max_connections")

        return http_config

    def get_generation_params(self) -> GenerationParams:
        """Get sampling parameters for the active provider."""
        return GenerationParams.from_config(self.get_llm_config())

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration from YAML."""
        return self._config.get("chat", {}).get("service", {})

    def get_relay_config(self) -> dict[str, Any]:
        """Get relay limits from YAML.

        Raises:
            ValueError: If required relay parameters are missing or invalid.
        """
        service_config = self.get_chat_service_config()

        required_keys = ["relay_timeout", "health_timeout", "max_message_length"]
        for key in required_keys:
            if key not in service_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under chat.service"
                )

        if service_config["relay_timeout"] <= 0:
            raise ValueError("relay_timeout must be positive")
        if service_config["health_timeout"] <= 0:
            raise ValueError("health_timeout must be positive")
        max_length = service_config["max_message_length"]
        if not isinstance(max_length, int) or max_length < 1:
            raise ValueError("max_message_length must be a positive integer")

        return {key: service_config[key] for key in required_keys}

    def get_relay_options(self) -> RelayOptions:
        """Build the default per-turn relay options."""
        llm_config = self.get_llm_config()
        return RelayOptions(
            base_url=llm_config["base_url"],
            model=llm_config["model"],
            mode=DecodeMode(llm_config["decoding"]),
            timeout=float(self.get_relay_config()["relay_timeout"]),
        )

    def get_welcome_message(self) -> str:
        return self.get_chat_service_config().get("welcome_message") or WELCOME_MESSAGE

    def get_websocket_config(self) -> dict[str, Any]:
        """Get WebSocket server configuration, honoring the PORT variable.

        Raises:
            ValueError: If the port is not a valid TCP port.
        """
        websocket_config = {
            "host": "0.0.0.0",
            "port": 10000,
            "endpoint": "/ws/chat",
            "allowed_origins": [],
            **self._config.get("chat", {}).get("websocket", {}),
        }
        if port := os.getenv("PORT"):
            websocket_config["port"] = int(port)

        if not 0 < int(websocket_config["port"]) < 65536:
            raise ValueError("chat.websocket.port must be between 1 and 65535")
        if not str(websocket_config["endpoint"]).startswith("/"):
            raise ValueError("chat.websocket.endpoint must start with '/'")

        return websocket_config

    def get_rate_limit_config(self) -> tuple[bool, RateLimitConfig]:
        """Get rate limiting switch and limits.

        Raises:
            ValueError: If the limits are not positive.
        """
        rate_config = self._config.get("rate_limit", {})
        config = RateLimitConfig(
            max_requests=rate_config.get("max_requests", RateLimitConfig.max_requests),
            window_seconds=rate_config.get(
                "window_seconds", RateLimitConfig.window_seconds
            ),
        )
        if config.max_requests < 1:
            raise ValueError("rate_limit.max_requests must be at least 1")
        if config.window_seconds <= 0:
            raise ValueError("rate_limit.window_seconds must be positive")
        return bool(rate_config.get("enabled", True)), config

    def get_fallback_messages(self) -> tuple[str, ...]:
        """Get the fallback answers used when the upstream fails.

        Raises:
            ValueError: If the configured list is present but empty or invalid.
        """
        fallback_config = self._config.get("fallback", {})
        if "messages" not in fallback_config:
            return FALLBACK_MESSAGES

        messages = fallback_config["messages"]
        if not isinstance(messages, list) or not messages:
            raise ValueError("fallback.messages must be a non-empty list")
        if not all(isinstance(m, str) and m.strip() for m in messages):
            raise ValueError("fallback.messages entries must be non-empty strings")
        return tuple(messages)

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})

    def get_log_level(self) -> int:
        """Resolve the configured log level name, honoring LOG_LEVEL."""
        name = os.getenv("LOG_LEVEL") or self.get_logging_config().get("level", "INFO")
        level = logging.getLevelName(str(name).upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level '{name}'")
        return level
