"""LLM and generation configuration."""

import os
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Optional


class ModelProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OLLAMA = "ollama"

    @classmethod
    def from_env(cls) -> "ModelProvider":
        """Detect provider from environment."""
        explicit = os.getenv("LLM_PROVIDER", "").lower()
        if explicit == "ollama":
            return cls.OLLAMA
        if explicit == "openai":
            return cls.OPENAI
        if os.getenv("OPENAI_API_KEY"):
            return cls.OPENAI
        return cls.OLLAMA


# Default models per provider
DEFAULT_MODELS = {
    ModelProvider.OPENAI: "gpt-4.1-2025-04-14",
    ModelProvider.OLLAMA: "gpt-oss:20b",
}


@dataclass
class ModelConfig:
    """Configuration for a model."""
    provider: ModelProvider
    model: str

    @property
    def full_name(self) -> str:
        """Get the full model string for pydantic-ai."""
        return f"{self.provider.value}:{self.model}"


def get_model_config(provider: Optional[ModelProvider] = None) -> ModelConfig:
    """Get the model configuration."""
    if provider is None:
        provider = ModelProvider.from_env()

    env_var = "OPENAI_MODEL" if provider == ModelProvider.OPENAI else "OLLAMA_MODEL"
    model = os.getenv(env_var, DEFAULT_MODELS[provider])
    return ModelConfig(provider=provider, model=model)


def _ensure_ollama_env():
    """Ensure OLLAMA_BASE_URL is set correctly for pydantic-ai.

    Pydantic-ai requires OLLAMA_BASE_URL with /v1 suffix.
    """
    os.environ["OLLAMA_BASE_URL"] = get_ollama_base_url()


def get_model_name(provider: Optional[ModelProvider] = None) -> str:
    """Get the model string for pydantic-ai.

    For Ollama, ensures OLLAMA_BASE_URL is set with /v1 suffix.
    """
    config = get_model_config(provider)

    if config.provider == ModelProvider.OLLAMA:
        _ensure_ollama_env()

    return config.full_name


def get_ollama_base_url() -> str:
    """Get Ollama base URL."""
    base = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    if not base.endswith("/v1"):
        base = base.rstrip("/") + "/v1"
    return base


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class GenerationSettings:
    """Knobs for one streaming generation.

    Delays are in seconds. ``settle_delay`` runs once after the opening fence,
    ``pacing_delay`` after every partial flush and ``completion_delay`` before
    the terminal success event.
    """
    temperature: float = 0.7
    retry_temperature_step: float = 0.2
    top_p: float = 0.95
    max_tokens: int = 4000
    settle_delay: float = 1.0
    pacing_delay: float = 0.4
    completion_delay: float = 0.8
    request_timeout: float = 120.0
    quota_unit: int = 1000
    history_limit: int = 30
    chat_context_limit: int = 10
    max_auto_retries: int = 1
    persist_attempts: int = 4
    persist_backoff: float = 0.5
    persist_max_backoff: float = 8.0
    validator: str = "structural"
    mermaid_cli_path: str = "mmdc"

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        d = cls()
        return cls(
            temperature=_env_float("MERMAID_TEMPERATURE", d.temperature),
            retry_temperature_step=_env_float("MERMAID_RETRY_TEMPERATURE_STEP", d.retry_temperature_step),
            top_p=_env_float("MERMAID_TOP_P", d.top_p),
            max_tokens=_env_int("MERMAID_MAX_TOKENS", d.max_tokens),
            settle_delay=_env_float("MERMAID_SETTLE_DELAY", d.settle_delay),
            pacing_delay=_env_float("MERMAID_PACING_DELAY", d.pacing_delay),
            completion_delay=_env_float("MERMAID_COMPLETION_DELAY", d.completion_delay),
            request_timeout=_env_float("MERMAID_REQUEST_TIMEOUT", d.request_timeout),
            quota_unit=_env_int("MERMAID_QUOTA_UNIT", d.quota_unit),
            history_limit=_env_int("MERMAID_HISTORY_LIMIT", d.history_limit),
            chat_context_limit=_env_int("MERMAID_CHAT_CONTEXT_LIMIT", d.chat_context_limit),
            max_auto_retries=_env_int("MERMAID_MAX_AUTO_RETRIES", d.max_auto_retries),
            persist_attempts=_env_int("MERMAID_PERSIST_ATTEMPTS", d.persist_attempts),
            persist_backoff=_env_float("MERMAID_PERSIST_BACKOFF", d.persist_backoff),
            persist_max_backoff=_env_float("MERMAID_PERSIST_MAX_BACKOFF", d.persist_max_backoff),
            validator=os.getenv("MERMAID_VALIDATOR", d.validator).strip().lower(),
            mermaid_cli_path=os.getenv("MERMAID_CLI_PATH", d.mermaid_cli_path),
        )

    def without_delays(self) -> "GenerationSettings":
        """Copy with every artificial delay set to zero."""
        return replace(self, settle_delay=0.0, pacing_delay=0.0, completion_delay=0.0)


def get_current_config() -> dict:
    """Get current configuration as a dictionary."""
    provider = ModelProvider.from_env()
    model_config = get_model_config(provider)

    config = {
        "provider": provider.value,
        "model": model_config.model,
        "model_full": model_config.full_name,
        "generation": asdict(GenerationSettings.from_env()),
    }

    if provider == ModelProvider.OPENAI:
        config["api_key_set"] = bool(os.getenv("OPENAI_API_KEY"))
    else:
        config["ollama_url"] = get_ollama_base_url()

    return config


def print_config():
    """Print current configuration."""
    config = get_current_config()
    print(f"Provider: {config['provider']}")
    print(f"Model: {config['model_full']}")
    if config["provider"] == "openai":
        print(f"API Key: {'Set' if config.get('api_key_set') else 'NOT SET'}")
    else:
        print(f"Ollama URL: {config.get('ollama_url')}")
    gen = config["generation"]
    print(f"Temperature: {gen['temperature']} (retry +{gen['retry_temperature_step']})")
    print(f"Pacing: settle {gen['settle_delay']}s, flush {gen['pacing_delay']}s")
    print(f"Timeout: {gen['request_timeout']}s")
    print(f"Validator: {gen['validator']}")
