"""core.log

Opt-in logging setup for applications embedding *llm_unify*.

Library modules only ever call ``logging.getLogger(__name__)``; nothing is
emitted until the application configures handlers, either its own or the
single stderr handler installed by `configure_logging`.
"""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER = 'llm_unify'
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'

_HANDLER_ATTR = '_llm_unify_handler'


def _parse_level(value: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    if not value:
        return default
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Attach one stderr handler to the ``llm_unify`` logger (idempotent).

    Level precedence: *level* argument, ``LLM_UNIFY_LOG_LEVEL``, INFO.
    """
    resolved = _parse_level(level if level is not None else os.getenv('LLM_UNIFY_LOG_LEVEL'))
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    for handler in logger.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(resolved)
            return logger
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, _HANDLER_ATTR, True)
    logger.addHandler(handler)
    return logger
