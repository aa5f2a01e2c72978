"""Root logger setup for processes embedding the permission engine."""

import logging
import sys

from forum_rbac.config.constants import ServiceName
from forum_rbac.config.settings import get_settings
from forum_rbac.logging.formatter import JSONLogFormatter


def configure_logging(service: ServiceName = ServiceName.RBAC, level: str | int | None = None) -> None:
    """Route every record through one stdout handler emitting JSON.

    *level* defaults to ``LOG_LEVEL`` from the engine settings. Existing root
    handlers are removed so records are not written twice.
    """
    if level is None:
        level = get_settings().LOG_LEVEL
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JSONLogFormatter(service=service))
    root.addHandler(stream)
