"""
Configuration management for the marketplace router.
Supports explicit client settings, named profiles, and YAML configuration
files with environment variable substitution.
"""

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .pricing import PriceTable, PricingError


class ConfigError(Exception):
    """Configuration related errors"""
    pass


DEFAULT_BASE_URL = "http://localhost:3001/api/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_CANDIDATE_MODELS = (
    "gpt-4o-mini",
    "claude-3-haiku-20240307",
    "gemini-1.5-flash",
)


@dataclass
class ClientConfig:
    """Recognized client options. Unknown keys are rejected by from_dict()."""
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    team_id: str | None = None
    user_id: str | None = None
    timeout_ms: int = 30_000
    retries: int = 3
    backoff_base_ms: int = 1000
    default_model: str = DEFAULT_MODEL
    candidate_models: tuple[str, ...] = DEFAULT_CANDIDATE_MODELS
    cost_tracking: bool = True

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ClientConfig":
        """
        Build a ClientConfig from a mapping.

        Args:
            raw: Option mapping (e.g. the 'client' section of a config file)

        Returns:
            ClientConfig

        Raises:
            ConfigError: If the mapping has unknown keys or no api_key
        """
        if not isinstance(raw, dict):
            raise ConfigError("Client configuration must be a mapping")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown client option(s): {', '.join(unknown)}")
        if "api_key" not in raw:
            raise ConfigError("Client option 'api_key' is required")

        values = dict(raw)
        if "candidate_models" in values and values["candidate_models"] is not None:
            values["candidate_models"] = tuple(values["candidate_models"])
        return cls(**values)

    @classmethod
    def preset(cls, profile: str, api_key: str, **overrides: Any) -> "ClientConfig":
        """
        Build a ClientConfig from a named profile.

        Args:
            profile: One of PROFILES
            api_key: Marketplace API key
            **overrides: Options applied on top of the profile

        Raises:
            ConfigError: If the profile is unknown or an override is not a client option
        """
        if profile not in PROFILES:
            raise ConfigError(
                f"Unknown profile: {profile}. Expected one of: {', '.join(sorted(PROFILES))}"
            )
        values = {**PROFILES[profile], **overrides, "api_key": api_key}
        return cls.from_dict(values)

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        return replace(self, **overrides)

    def validate(self) -> list[str]:
        """Validate the configuration, returning a list of errors."""
        errors = []
        if not isinstance(self.api_key, str) or not self.api_key.strip():
            errors.append("api_key is required and cannot be empty")
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            errors.append("base_url must be an http(s) URL")
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            errors.append("timeout_ms must be a positive integer")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            errors.append("retries must be a non-negative integer")
        if isinstance(self.backoff_base_ms, bool) or not isinstance(self.backoff_base_ms, int) or self.backoff_base_ms < 0:
            errors.append("backoff_base_ms must be a non-negative integer")
        if not isinstance(self.default_model, str) or not self.default_model.strip():
            errors.append("default_model is required and cannot be empty")
        if not self.candidate_models:
            errors.append("candidate_models must contain at least one model")
        for name in ("team_id", "user_id"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                errors.append(f"{name} must be a string")
        return errors


PROFILES: dict[str, dict[str, Any]] = {
    "cost_optimized": {"default_model": "gemini-1.5-flash"},
    "performance": {"default_model": "gpt-4o", "timeout_ms": 10_000},
    "balanced": {"default_model": "gpt-4o-mini"},
    "privacy": {"default_model": "llama3.2:3b"},
    "development": {"retries": 1},
    "production": {"timeout_ms": 60_000, "retries": 5},
}


@dataclass
class ProxyConfig:
    """Proxy configuration for outbound HTTP requests"""
    enable: bool = False
    host: str | None = None
    port: int | None = None


@dataclass
class HttpClientConfig:
    """HTTP client connection pool configuration"""
    max_connections: int = 100
    max_keepalive_connections: int = 20


@dataclass
class Config:
    """Complete configuration file contents"""
    client: ClientConfig
    pricing: PriceTable = field(default_factory=PriceTable)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    http_client: HttpClientConfig = field(default_factory=HttpClientConfig)


class ConfigManager:
    """
    Configuration manager for the marketplace router.

    Supports:
    - Loading configuration from YAML files
    - Environment variable substitution (${VAR_NAME} syntax)
    - Loading a .env file next to (or above) the configuration file
    - Price table overrides and a custom fallback price pair
    """

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    def __init__(self, config_path: str | Path | None = None):
        """
        Initialize ConfigManager.

        Args:
            config_path: Path to YAML configuration file. If None, uses marketplace.yaml
        """
        self._config: Config | None = None
        self._config_path = Path(config_path) if config_path else Path("marketplace.yaml")

    @property
    def config(self) -> Config:
        """Get the loaded configuration, loading it if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    def load(self, config_path: str | Path | None = None) -> Config:
        """
        Load configuration from YAML file.

        Args:
            config_path: Optional path to override the default config path

        Returns:
            Loaded Config object

        Raises:
            ConfigError: If configuration file is invalid or cannot be loaded
        """
        path = Path(config_path) if config_path else self._config_path

        self._load_env_file_if_present(path)

        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML format: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}")

        if raw_config is None:
            raise ConfigError("Configuration file is empty")

        if not isinstance(raw_config, dict):
            raise ConfigError("Configuration must be a YAML mapping")

        raw_config = self._substitute_env_vars(raw_config)

        self._config = self._parse_config(raw_config)
        return self._config

    def _load_env_file_if_present(self, config_path: Path) -> None:
        search_root = config_path if config_path.is_dir() else config_path.parent
        env_path: Path | None = None
        for candidate_dir in [search_root, *search_root.parents]:
            candidate = candidate_dir / ".env"
            if candidate.exists():
                env_path = candidate
                break

        if env_path is None:
            return

        try:
            lines = env_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if not key:
                continue
            # Real environment wins over .env
            if os.environ.get(key, "") == "":
                os.environ[key] = value

    def _substitute_env_vars(self, obj: Any) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} syntax. Raises ConfigError for unset variables.
        """
        if isinstance(obj, str):
            def replace_env_var(match: re.Match) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    raise ConfigError(f"Environment variable not set: {var_name}")
                return value

            return self.ENV_VAR_PATTERN.sub(replace_env_var, obj)
        elif isinstance(obj, dict):
            return {k: self._substitute_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item) for item in obj]
        return obj

    def _parse_config(self, raw: dict) -> Config:
        """Parse raw configuration dictionary into Config object."""
        if 'client' not in raw:
            raise ConfigError("Missing 'client' section")
        client_raw = raw['client']
        if not isinstance(client_raw, dict):
            raise ConfigError("'client' section must be a mapping")
        client = ClientConfig.from_dict(client_raw)
        errors = client.validate()
        if errors:
            raise ConfigError(f"Invalid client configuration: {'; '.join(errors)}")

        config = Config(client=client)

        pricing_raw = raw.get('pricing') or {}
        fallback_raw = raw.get('fallback_pricing')
        if not isinstance(pricing_raw, dict):
            raise ConfigError("'pricing' section must be a mapping")
        try:
            config.pricing = PriceTable.from_mapping(pricing_raw, fallback=fallback_raw)
        except PricingError as e:
            raise ConfigError(f"Invalid pricing: {e}")

        if 'proxy' in raw:
            proxy_raw = raw['proxy']
            if not isinstance(proxy_raw, dict):
                raise ConfigError("'proxy' section must be a mapping")
            port = proxy_raw.get('port')
            try:
                port_value = int(port) if port is not None else None
            except (TypeError, ValueError):
                raise ConfigError("'proxy.port' must be an integer")
            config.proxy = ProxyConfig(
                enable=bool(proxy_raw.get('enable', False)),
                host=proxy_raw.get('host'),
                port=port_value,
            )

        if 'http_client' in raw:
            http_client_raw = raw['http_client']
            if not isinstance(http_client_raw, dict):
                raise ConfigError("'http_client' section must be a mapping")
            try:
                config.http_client = HttpClientConfig(
                    max_connections=int(http_client_raw.get('max_connections', 100)),
                    max_keepalive_connections=int(http_client_raw.get('max_keepalive_connections', 20)),
                )
            except (TypeError, ValueError):
                raise ConfigError("'http_client' limits must be integers")

        return config

    def get_client_config(self) -> ClientConfig:
        return self.config.client

    def get_price_table(self) -> PriceTable:
        return self.config.pricing

    def get_proxy_url(self) -> str | None:
        """Get proxy URL if proxy is enabled, otherwise None."""
        proxy = self.config.proxy
        if not proxy.enable or not proxy.host:
            return None
        host = proxy.host.rstrip("/")
        if proxy.port:
            return f"{host}:{proxy.port}"
        return host
