"""Shared infrastructure: logging and YAML configuration loading."""

from alpo.utils.config_loader import ConfigLoader
from alpo.utils.logger import LoggerManager, with_context

__all__ = ["ConfigLoader", "LoggerManager", "with_context"]
