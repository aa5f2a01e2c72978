"""Structured logging: JSON formatter and setup."""

from forum_rbac.logging.formatter import JSONLogFormatter
from forum_rbac.logging.setup import configure_logging

__all__ = ["JSONLogFormatter", "configure_logging"]
