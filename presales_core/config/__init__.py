"""Configuration module -- exports Settings and the config/template loaders."""

from presales_core.config.loader import load_config, load_template_config
from presales_core.config.settings import Settings

__all__ = ["Settings", "load_config", "load_template_config"]
