"""Gateway configuration: API keys, per-provider settings, registry wiring."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values

from .providers.registry import StrategyRegistry

logger = logging.getLogger(__name__)

# User-level config paths
GATEWAY_USER_DIR = Path.home() / ".chat-gateway"
GATEWAY_KEYS_FILE = GATEWAY_USER_DIR / "keys.env"

ENV_PREFIX = "CHAT_GATEWAY_"

# Environment variable names for API keys, in lookup order
API_KEY_ENV_VARS = {
    "deepseek": ["DEEPSEEK_API_KEY"],
    "glm": ["GLM_API_KEY", "ZHIPUAI_API_KEY"],
    "iflow": ["IFLOW_API_KEY"],
}

DEFAULT_BASE_URLS = {
    "deepseek": "https://api.deepseek.com",
    "glm": "https://open.bigmodel.cn/api/paas/v4",
    "iflow": "https://apis.iflow.cn/v1",
}

CONNECT_TIMEOUT = 60.0
DEFAULT_READ_TIMEOUTS = {
    "deepseek": 60.0,
    "glm": 300.0,
    "iflow": 300.0,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ProviderSettings:
    """Settings for one provider."""

    name: str
    api_key: Optional[str] = None
    enabled: bool = True
    models: Optional[list[str]] = None  # None means the strategy's defaults
    base_url: Optional[str] = None
    connect_timeout: float = CONNECT_TIMEOUT
    read_timeout: float = 60.0


@dataclass
class GatewaySettings:
    """Configuration for the whole gateway."""

    deepseek: ProviderSettings = field(default_factory=lambda: ProviderSettings("deepseek"))
    glm: ProviderSettings = field(
        default_factory=lambda: ProviderSettings("glm", read_timeout=DEFAULT_READ_TIMEOUTS["glm"])
    )
    iflow: ProviderSettings = field(
        default_factory=lambda: ProviderSettings("iflow", read_timeout=DEFAULT_READ_TIMEOUTS["iflow"])
    )
    glm_image_limits: dict[str, int] = field(default_factory=dict)

    def providers(self) -> list[ProviderSettings]:
        return [self.deepseek, self.glm, self.iflow]


def load_gateway_keys(keys_file: Optional[Path] = None) -> dict[str, str]:
    """Load API keys from the user's keys.env file.

    The file is in dotenv format and uses the same variable names as the
    environment (DEEPSEEK_API_KEY, GLM_API_KEY, ...).

    Returns:
        Dict mapping provider names to API keys
    """
    keys: dict[str, str] = {}
    keys_file = keys_file or GATEWAY_KEYS_FILE

    if not keys_file.exists():
        logger.debug(f"Keys file not found: {keys_file}")
        return keys

    try:
        values = dotenv_values(keys_file)
    except OSError as e:
        logger.warning(f"Failed to read keys file {keys_file}: {e}")
        return keys

    for provider, env_vars in API_KEY_ENV_VARS.items():
        for var in env_vars:
            if values.get(var):
                keys[provider] = values[var]
                break

    logger.debug(f"Loaded {len(keys)} API keys from {keys_file}")
    return keys


def resolve_api_key(
    provider: str,
    explicit_key: Optional[str] = None,
    file_keys: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Resolve API key from explicit param, keys file, or env var.

    Resolution order:
    1. Explicit api_key parameter
    2. Keys file (~/.chat-gateway/keys.env)
    3. Environment variables

    Args:
        provider: Provider name ("deepseek", "glm", "iflow")
        explicit_key: Explicitly provided API key
        file_keys: Already loaded keys file contents (loaded if omitted)

    Returns:
        Resolved API key, or None if the provider has none configured
    """
    if explicit_key:
        return explicit_key

    if file_keys is None:
        file_keys = load_gateway_keys()
    if file_keys.get(provider):
        logger.debug(f"Using API key from keys file for {provider}")
        return file_keys[provider]

    for var in API_KEY_ENV_VARS.get(provider, []):
        key = os.environ.get(var)
        if key:
            return key

    return None


def _env(provider: str, suffix: str) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{provider.upper()}_{suffix}")


def _parse_models(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    models = [m.strip() for m in value.split(",") if m.strip()]
    return models or None


def _parse_image_limits(value: Optional[str]) -> dict[str, int]:
    """Parse ``model=limit,model=limit``."""
    limits: dict[str, int] = {}
    if not value:
        return limits
    for entry in value.split(","):
        model, sep, limit = entry.partition("=")
        if not sep:
            raise ValueError(f"Invalid image limit entry (expected model=limit): {entry!r}")
        limits[model.strip()] = int(limit)
    return limits


def load_provider_settings(
    provider: str,
    explicit_key: Optional[str] = None,
    file_keys: Optional[Mapping[str, str]] = None,
) -> ProviderSettings:
    enabled = _env(provider, "ENABLED")
    read_timeout = _env(provider, "READ_TIMEOUT")
    return ProviderSettings(
        name=provider,
        api_key=resolve_api_key(provider, explicit_key, file_keys),
        enabled=enabled.strip().lower() in _TRUE_VALUES if enabled is not None else True,
        models=_parse_models(_env(provider, "MODELS")),
        base_url=_env(provider, "BASE_URL") or DEFAULT_BASE_URLS[provider],
        read_timeout=float(read_timeout) if read_timeout else DEFAULT_READ_TIMEOUTS[provider],
    )


def load_settings(
    api_keys: Optional[Mapping[str, str]] = None,
    keys_file: Optional[Path] = None,
) -> GatewaySettings:
    """Load gateway settings from the keys file and environment.

    Args:
        api_keys: Explicit provider -> API key overrides
        keys_file: dotenv file holding API keys (default ~/.chat-gateway/keys.env)

    Returns:
        GatewaySettings with every provider populated
    """
    api_keys = api_keys or {}
    file_keys = load_gateway_keys(keys_file)
    settings = GatewaySettings(
        deepseek=load_provider_settings("deepseek", api_keys.get("deepseek"), file_keys),
        glm=load_provider_settings("glm", api_keys.get("glm"), file_keys),
        iflow=load_provider_settings("iflow", api_keys.get("iflow"), file_keys),
        glm_image_limits=_parse_image_limits(os.environ.get(f"{ENV_PREFIX}GLM_IMAGE_LIMITS")),
    )
    for provider in settings.providers():
        if provider.enabled and not provider.api_key:
            logger.debug(
                f"No API key for {provider.name}; set {' or '.join(API_KEY_ENV_VARS[provider.name])}"
            )
    return settings


def create_client(provider: ProviderSettings):
    """Build the OpenAI-compatible transport for one provider."""
    from .providers.client import OpenAICompatibleClient

    return OpenAICompatibleClient(
        api_key=provider.api_key,
        base_url=provider.base_url or DEFAULT_BASE_URLS[provider.name],
        connect_timeout=provider.connect_timeout,
        read_timeout=provider.read_timeout,
    )


def build_registry(settings: GatewaySettings, clients: Optional[Mapping[str, object]] = None) -> StrategyRegistry:
    """Create and register every enabled strategy.

    A provider is registered when it is enabled and either has an API key or
    a client was injected for it.

    Args:
        settings: Loaded gateway settings
        clients: Provider name -> client overrides (tests inject fakes here)

    Returns:
        Populated StrategyRegistry
    """
    from .providers.deepseek import DeepSeekStrategy
    from .providers.glm import GlmVisionStrategy
    from .providers.iflow import IflowStrategy

    clients = clients or {}
    registry = StrategyRegistry()

    for provider in settings.providers():
        if not provider.enabled:
            logger.info(f"Provider {provider.name} disabled")
            continue
        client = clients.get(provider.name)
        if client is None:
            if not provider.api_key:
                logger.info(f"Skipping {provider.name}: no API key configured")
                continue
            client = create_client(provider)

        if provider.name == "deepseek":
            strategy = DeepSeekStrategy(client, provider.models)
        elif provider.name == "glm":
            strategy = GlmVisionStrategy(
                client, provider.models, image_limits=settings.glm_image_limits
            )
        else:
            strategy = IflowStrategy(client, provider.models)
        registry.register(strategy)

    logger.info(f"Registry ready with {len(registry)} model(s): {registry.supported_models()}")
    return registry
