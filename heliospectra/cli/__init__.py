"""Command-line helpers."""
from __future__ import annotations

from .common import build_parser, configure_logging, resolve_config

__all__ = ["build_parser", "configure_logging", "resolve_config"]
