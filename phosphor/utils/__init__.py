"""
Utilities shared across phosphor.
"""

from .logging import configure_logging, level_for, PasswordFilter

__all__ = ["configure_logging", "level_for", "PasswordFilter"]
