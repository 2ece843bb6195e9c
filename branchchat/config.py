"""Configuration loading for branch-chat."""

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .detection import DEFAULT_CONFIDENCE_THRESHOLD
from .llm.base import DEFAULT_MAX_TOKENS, Provider

# Default model per provider
DEFAULT_MODELS = {
    Provider.ANTHROPIC: "claude-sonnet-4-20250514",
    Provider.OPENAI: "gpt-4o",
    Provider.OLLAMA: "llama3.1",
}

# Known hosted models; Ollama serves whatever has been pulled locally
KNOWN_MODELS = {
    Provider.ANTHROPIC: {
        "claude-sonnet-4-20250514",
        "claude-haiku-4-20250514",
        "claude-opus-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
    },
    Provider.OPENAI: {
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4.1",
        "gpt-4.1-mini",
    },
}


class LLMSettings(BaseModel):
    """Which provider and model answer messages."""

    provider: Provider = Field(Provider.ANTHROPIC, description="Completion provider")
    model: str | None = Field(None, description="Model name (provider default if unset)")
    max_tokens: int = Field(DEFAULT_MAX_TOKENS, ge=1, le=200_000)
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    stream: bool = Field(True, description="Stream replies chunk by chunk")
    system_prompt: str | None = Field(None, description="Prepended to every request")
    ollama_base_url: str | None = Field(None, description="Ollama server URL")

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]


class BranchingSettings(BaseModel):
    """Automatic branching on multi-question input."""

    auto_branch: bool = Field(True, description="Split multi-question input into branches")
    confidence_threshold: float = Field(DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)


class ViewSettings(BaseModel):
    """Initial navigation state."""

    focus_ratio: float = Field(0.8, gt=0.0, le=1.0, description="Screen share of focused branch")


class StorageSettings(BaseModel):
    """Where conversation snapshots are written."""

    output_dir: str = Field("./conversations", description="Directory for saved trees")


class AppConfig(BaseModel):
    """Complete configuration file structure."""

    llm: LLMSettings = Field(default_factory=LLMSettings)
    branching: BranchingSettings = Field(default_factory=BranchingSettings)
    view: ViewSettings = Field(default_factory=ViewSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


class ConfigError(Exception):
    """Error loading or validating configuration."""

    def __init__(self, message: str, details: list[str] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.details:
            return self.message
        detail_str = "\n  - ".join(self.details)
        return f"{self.message}\n  - {detail_str}"


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in a string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars substituted
    """
    # Pattern: ${VAR} or ${VAR:-default}
    pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}"

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        if default is not None:
            return default
        # Return original if no value and no default
        return match.group(0)

    return re.sub(pattern, replacer, value)


def _substitute_env_vars_recursive(obj):
    """Recursively substitute env vars in a data structure."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars_recursive(item) for item in obj]
    else:
        return obj


def load_config(path: Path | None) -> AppConfig:
    """Load and validate a configuration file.

    Args:
        path: Path to the YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        ConfigError: If file cannot be loaded or validation fails
    """
    if path is None:
        return AppConfig()

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    if not path.is_file():
        raise ConfigError(f"Path is not a file: {path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {path}", [str(e)])

    if raw_data is None:
        raise ConfigError(f"Configuration file is empty: {path}")

    if not isinstance(raw_data, dict):
        raise ConfigError(
            f"Configuration must be a YAML mapping, got {type(raw_data).__name__}"
        )

    data = _substitute_env_vars_recursive(raw_data)

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"{loc}: {msg}")
        raise ConfigError(f"Invalid configuration in {path}", errors)

    # Hosted providers only serve models they know about
    known = KNOWN_MODELS.get(config.llm.provider)
    if known is not None and config.llm.model and config.llm.model not in known:
        valid_list = ", ".join(sorted(known))
        raise ConfigError(
            "Invalid model specified",
            [
                f"llm.model: unknown {config.llm.provider.value} model '{config.llm.model}'",
                f"Valid models: {valid_list}",
            ],
        )

    return config
