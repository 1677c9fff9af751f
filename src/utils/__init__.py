"""Utilities package for atelier-ledger: configuration, constants and the CLI."""

from .config import Config, get_config, reset_config
from .datetime_utils import to_iso, utc_now

__all__ = [
    "Config",
    "get_config",
    "reset_config",
    "to_iso",
    "utc_now",
]
