import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from repolens_core.exceptions import ConfigurationError
from repolens_core.models import OutputType, ReviewType

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "SENSITIVE_SETTINGS_PATH"
DEFAULT_API_TIMEOUT = 30

DEFAULT_CONFIG: dict = {
    "providers": [
        {
            "name": "openai",
            "services": [
                {"name": "gpt-4o", "model": "gpt-4o"},
                {"name": "gpt-4-turbo", "model": "gpt-4-turbo-preview"},
                {"name": "gpt-3.5-turbo", "model": "gpt-3.5-turbo"},
            ],
            "default_service": "gpt-4o",
            "api_url": "https://api.openai.com/v1/chat/completions",
            "api_timeout": DEFAULT_API_TIMEOUT,
            "max_tokens": 4096,
            "max_retries": 0,
        },
        {
            "name": "google",
            "services": [
                {"name": "gemini-pro", "model": "gemini-1.5-pro"},
                {"name": "gemini-flash", "model": "gemini-1.5-flash"},
            ],
            "default_service": "gemini-pro",
            "api_url": "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent",
            "api_timeout": DEFAULT_API_TIMEOUT,
            "max_retries": 0,
        },
        {
            "name": "vertex",
            "services": [
                {"name": "gemini-pro", "model": "gemini-1.5-pro"},
                {"name": "gemini-flash", "model": "gemini-1.5-flash"},
            ],
            "default_service": "gemini-pro",
            "api_url": (
                "https://{region}-aiplatform.googleapis.com/v1/projects/{project_id}"
                "/locations/{region}/publishers/google/models/{model}:streamGenerateContent"
            ),
            "api_timeout": DEFAULT_API_TIMEOUT,
            "max_retries": 0,
        },
        {
            "name": "lmstudio",
            "services": [{"name": "local", "model": "local-model"}],
            "default_service": "local",
            "api_url": "http://localhost:1234/v1/chat/completions",
            "api_timeout": 120,
            "max_retries": 0,
        },
        {
            "name": "anthropic",
            "services": [{"name": "claude-sonnet", "model": "claude-sonnet-4-20250514"}],
            "default_service": "claude-sonnet",
            "api_url": "https://api.anthropic.com",
            "api_timeout": DEFAULT_API_TIMEOUT,
            "max_tokens": 4096,
            "max_retries": 0,
        },
    ],
    "default_provider": "openai",
    "chosen_provider": None,
    "output_type": "json",
    "review_type": "general",
    "repository_path": ".",
    "report_output_path": "output",
    "heuristics_prefix_bytes": 8192,
    "abort_on_provider_error": True,
    "sensitive": {"api_key": ""},
    "developer_mode": None,
}

# Integer codes accepted for review_type in older settings files.
_LEGACY_REVIEW_TYPES = {1: "general", 2: "security", 3: "codestats"}


class ServiceSettings(BaseModel):
    name: str
    model: str


class ProviderSettings(BaseModel):
    name: str
    services: list[ServiceSettings] = Field(default_factory=list)
    default_service: str
    chosen_service: Optional[str] = None
    api_url: str
    api_timeout: float = Field(default=DEFAULT_API_TIMEOUT, gt=0)
    max_tokens: Optional[int] = None
    max_retries: int = Field(default=0, ge=0)

    def active_service(self) -> ServiceSettings:
        wanted = self.chosen_service or self.default_service
        for service in self.services:
            if service.name == wanted:
                return service
        key = "chosen_service" if self.chosen_service else "default_service"
        raise ConfigurationError(f"Unknown service {wanted!r} for provider {self.name!r} ({key}).")


class SensitiveSettings(BaseModel):
    api_key: SecretStr = SecretStr("")
    org_id: Optional[str] = None
    org_name: Optional[str] = None
    region: str = "us-central1"
    project_id: Optional[str] = None


class DeveloperMode(BaseModel):
    max_file_count: Optional[int] = None
    verbose_data_output: bool = False
    test_path: Optional[str] = None
    test_file: Optional[str] = None


class Settings(BaseModel):
    providers: list[ProviderSettings]
    default_provider: str
    chosen_provider: Optional[str] = None
    output_type: OutputType = OutputType.JSON
    review_type: ReviewType = ReviewType.GENERAL
    repository_path: str = "."
    report_output_path: str = "output"
    heuristics_prefix_bytes: int = Field(default=8192, gt=0)
    abort_on_provider_error: bool = True
    sensitive: SensitiveSettings = Field(default_factory=SensitiveSettings)
    developer_mode: Optional[DeveloperMode] = None

    @field_validator("review_type", mode="before")
    @classmethod
    def _legacy_review_type(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return _LEGACY_REVIEW_TYPES.get(value, value)
        if isinstance(value, str):
            value = value.strip().lower()
            if value.isdigit():
                return _LEGACY_REVIEW_TYPES.get(int(value), value)
        return value

    @field_validator("output_type", mode="before")
    @classmethod
    def _lower_output_type(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    def active_provider(self) -> ProviderSettings:
        wanted = self.chosen_provider or self.default_provider
        for provider in self.providers:
            if provider.name == wanted:
                return provider
        key = "chosen_provider" if self.chosen_provider else "default_provider"
        raise ConfigurationError(f"Unknown provider {wanted!r} ({key}).")

    @property
    def dev(self) -> DeveloperMode:
        return self.developer_mode or DeveloperMode()


def _merge_providers(base: list, override: list) -> list:
    """Merge provider entries by ``name``; unknown names are appended."""
    merged = [copy.deepcopy(p) for p in base]
    index = {p.get("name"): i for i, p in enumerate(merged)}
    for i, provider in enumerate(override):
        if not isinstance(provider, dict) or not provider.get("name"):
            raise ConfigurationError(f"providers.{i}.name is required.")
        name = provider["name"]
        if name in index:
            merged[index[name]] = _deep_merge(merged[index[name]], provider)
        else:
            index[name] = len(merged)
            merged.append(copy.deepcopy(provider))
    return merged


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if key == "providers" and isinstance(value, list):
            merged[key] = _merge_providers(merged.get(key) or [], value)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _read_settings_file(path: Path) -> dict:
    if not path.is_file():
        raise ConfigurationError(f"Settings file not found: {path} ({SETTINGS_ENV_VAR}).")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Settings file {path} is malformed: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping at the top level.")
    return data


def _apply_overrides(config: dict, overrides: dict) -> dict:
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "chosen_service":
            # Applies to whichever provider is active after the other overrides.
            continue
        if isinstance(value, dict):
            value = {k: v for k, v in value.items() if v is not None}
            if not value:
                continue
            current = config.get(key) if isinstance(config.get(key), dict) else {}
            config[key] = _deep_merge(current, value)
        else:
            config[key] = value

    service = overrides.get("chosen_service")
    if service is not None:
        active = config.get("chosen_provider") or config.get("default_provider")
        for provider in config.get("providers", []):
            if provider.get("name") == active:
                provider["chosen_service"] = service
                break
    return config


def _validation_message(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        key = ".".join(str(part) for part in err["loc"]) or "<root>"
        problems.append(f"{key}: {err['msg']}")
    return "Invalid settings: " + "; ".join(problems)


def load_settings(
    settings_path: Optional[str] = None,
    cli_overrides: Optional[dict] = None,
    require_file: bool = True,
) -> Settings:
    """
    Load settings by merging (in order of precedence):
      1. Built-in defaults (DEFAULT_CONFIG)
      2. The runtime settings file named by ``settings_path`` or $SENSITIVE_SETTINGS_PATH
      3. CLI argument overrides (None values are ignored)

    The provider list is merged by provider name, so a settings file only has
    to mention the fields it changes.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = settings_path or os.environ.get(SETTINGS_ENV_VAR)
    if path:
        config = _deep_merge(config, _read_settings_file(Path(path)))
    elif require_file:
        raise ConfigurationError(f"No settings file given. Set {SETTINGS_ENV_VAR} or pass --settings.")
    else:
        logger.debug("No settings file given; using built-in defaults.")

    if cli_overrides:
        config = _apply_overrides(config, cli_overrides)

    try:
        settings = Settings.model_validate(config)
    except ValidationError as e:
        raise ConfigurationError(_validation_message(e))

    # Fail on an unknown provider or service now rather than mid-run.
    settings.active_provider().active_service()
    return settings
