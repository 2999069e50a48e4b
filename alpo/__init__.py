"""Alpo chat core: session/message lifecycle and housing company news sync."""

__version__ = "0.1.0"
