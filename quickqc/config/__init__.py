"""Configuration models and the YAML loader."""

from .loader import load_config
from .schema import DiscoveryConfig, QcConfig, QcPolicy, ToolkitConfig

__all__ = ["load_config", "QcConfig", "QcPolicy", "DiscoveryConfig", "ToolkitConfig"]
