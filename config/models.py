"""Pydantic configuration models for the browser automation agent."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError


# Load .env file if present
load_dotenv()

InteractionModeName = Literal["vision", "dom-ref", "text-only"]
ProviderName = Literal["openai", "openrouter", "google", "ollama", "lmstudio"]


class AgentConfig(BaseModel):
    """Agent loop budgets, prompt inputs and settle delays."""

    max_outer_steps: int = Field(
        default=8,
        ge=1,
        le=100,
        description="Maximum number of outer loop iterations per task",
    )
    max_inner_steps: int = Field(
        default=6,
        ge=1,
        le=20,
        description="Maximum tool-calling rounds inside one outer step",
    )
    max_consecutive_errors: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Consecutive model-call failures before the session aborts",
    )
    interaction_mode: InteractionModeName = Field(
        default="vision",
        description="Starting interaction mode; vision is downgraded on incompatibility",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Temperature for model generation",
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens for one model response",
    )
    system_prompt: Optional[str] = Field(
        default=None,
        description="Replaces the built-in system prompt for every interaction mode",
    )
    search_url_template: str = Field(
        default="https://www.bing.com/search?q={query}",
        description="Search URL used when navigate() receives a free-text query",
    )
    navigation_settle_ms: int = Field(default=1500, ge=0, le=10000)
    snapshot_settle_ms: int = Field(default=600, ge=0, le=5000)
    page_text_settle_ms: int = Field(default=400, ge=0, le=5000)
    click_wait_ms: int = Field(default=800, ge=0, le=10000)
    submit_wait_ms: int = Field(default=1200, ge=0, le=10000)
    type_wait_ms: int = Field(default=300, ge=0, le=5000)
    scroll_settle_ms: int = Field(default=500, ge=0, le=5000)
    max_wait_ms: int = Field(
        default=8000,
        ge=0,
        le=10000,
        description="Upper bound for waitFor() and caller-tuned click waits",
    )
    emit_screenshots: bool = Field(
        default=False,
        description="Attach the step screenshot to thinking progress events in vision mode",
    )
    screenshot_max_width: int = Field(default=1024, ge=256, le=3840)

    @field_validator("search_url_template")
    @classmethod
    def validate_search_template(cls, v: str) -> str:
        """Ensure the search template has a query placeholder."""
        if "{query}" not in v:
            raise ValueError("search_url_template must contain '{query}'")
        return v


class BrowserConfig(BaseModel):
    """Browser automation configuration."""

    browser: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    headless: bool = Field(
        default=False,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(default=1280, ge=800, le=3840)
    viewport_height: int = Field(default=900, ge=600, le=2160)
    mute_audio: bool = Field(
        default=True,
        description="Mute audio output of the automated browser",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )


class ModelEntry(BaseModel):
    """One model in the registry that roles point at."""

    id: str
    provider: ProviderName
    model_id: str
    supports_vision: Optional[bool] = Field(
        default=None,
        description="Known vision support; None means try images first and fall back on rejection",
    )


class ProviderKeys(BaseModel):
    """API keys and base URLs for the supported providers."""

    openai: Optional[str] = None
    openrouter: Optional[str] = None
    google: Optional[str] = None
    ollama_base_url: Optional[str] = None
    lmstudio_base_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Load values from environment variables if not explicitly set."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return data
        env_mapping = {
            "openai": "OPENAI_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
            "google": "GOOGLE_API_KEY",
            "ollama_base_url": "OLLAMA_BASE_URL",
            "lmstudio_base_url": "LMSTUDIO_BASE_URL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class ModelRoutingConfig(BaseModel):
    """Role-to-model assignments and the model registry."""

    roles: dict[str, str] = Field(
        default_factory=dict,
        description="Logical role name (vision, chat, ...) to model registry id",
    )
    models: list[ModelEntry] = Field(default_factory=list)
    keys: ProviderKeys = Field(default_factory=ProviderKeys)

    def find(self, model_id: str) -> Optional[ModelEntry]:
        for entry in self.models:
            if entry.id == model_id:
                return entry
        return None


class ReportingConfig(BaseModel):
    """Reporting and output configuration."""

    save_trace: bool = Field(
        default=False,
        description="Write a JSON trace of each session",
    )
    reports_folder: Path = Field(
        default=Path("./reports"),
        description="Directory for saving session traces",
    )

    @field_validator("reports_folder", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class AgentSettings(BaseModel):
    """Root configuration model combining all config sections."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    routing: ModelRoutingConfig = Field(default_factory=ModelRoutingConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @classmethod
    def from_flat_dict(cls, data: dict[str, Any]) -> "AgentSettings":
        """Create settings from a flat dictionary (legacy format compatibility)."""
        agent_keys = set(AgentConfig.model_fields)
        browser_keys = set(BrowserConfig.model_fields)
        routing_keys = set(ModelRoutingConfig.model_fields)
        reporting_keys = set(ReportingConfig.model_fields)

        nested: dict[str, Any] = {
            "agent": {},
            "browser": {},
            "routing": {},
            "reporting": {},
        }

        for key, value in data.items():
            if key in agent_keys:
                nested["agent"][key] = value
            elif key in browser_keys:
                nested["browser"][key] = value
            elif key in routing_keys:
                nested["routing"][key] = value
            elif key in reporting_keys:
                nested["reporting"][key] = value
            elif key == "verbose":
                nested["verbose"] = value

        return cls.model_validate(nested)


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> AgentSettings:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults

    An explicit path must exist; without one, ./config.json is used when present.
    """
    config_data: dict[str, Any] = {}

    required = config_path is not None
    if config_path is None:
        config_path = Path("config.json")

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix in {".yaml", ".yml"}:
                import yaml
                config_data = yaml.safe_load(f) or {}
            else:
                config_data = json.load(f)
    elif required:
        raise ConfigFileNotFoundError(str(config_path))

    # Flat files put budgets or roles at the top level
    is_flat = any(key in config_data for key in ["roles", "models", "max_outer_steps", "headless"])

    if is_flat:
        config = AgentSettings.from_flat_dict(config_data)
    else:
        config = AgentSettings.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = AgentSettings.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "headful": ("browser", "headless"),  # inverted
        "verbose": ("verbose", None),
        "mode": ("agent", "interaction_mode"),
        "max_steps": ("agent", "max_outer_steps"),
        "save_trace": ("reporting", "save_trace"),
        "reports_dir": ("reporting", "reports_folder"),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
