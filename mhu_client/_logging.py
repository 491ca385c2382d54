# =============================================================================
# MHU Python Client -- Package Logger
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger("mhu_client")
logger.addHandler(logging.NullHandler())

_DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def enable_debug_logging(handler: logging.Handler | None = None) -> None:
    """Route package logs at DEBUG level to *handler* (stderr by default).

    Calling it more than once does not stack handlers.
    """
    logger.setLevel(logging.DEBUG)
    if any(getattr(h, "_mhu_debug", False) for h in logger.handlers):
        return
    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_DEBUG_FORMAT))
    handler._mhu_debug = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
