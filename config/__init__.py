"""Configuration module for the browser automation agent."""
from config.models import (
    AgentConfig,
    AgentSettings,
    BrowserConfig,
    ModelEntry,
    ModelRoutingConfig,
    ProviderKeys,
    ReportingConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "AgentSettings",
    "BrowserConfig",
    "ModelEntry",
    "ModelRoutingConfig",
    "ProviderKeys",
    "ReportingConfig",
    "load_config",
]
