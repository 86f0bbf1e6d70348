"""Logging configuration for the taskpilot package."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Attach a single stream handler to the ``taskpilot`` logger.

    Safe to call more than once; the handler is replaced, not duplicated.
    Library code only ever calls ``logging.getLogger(__name__)``.
    """
    root = logging.getLogger("taskpilot")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, "_taskpilot", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._taskpilot = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root
