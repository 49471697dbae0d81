from __future__ import annotations

import logging
import sys

_HANDLER_NAME = "genai_tasks.console"


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure root logging with one stderr handler.

    Safe to call more than once: the handler installed by a previous call is
    replaced, handlers installed by anything else are left alone.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ch = logging.StreamHandler(sys.stderr)
    ch.set_name(_HANDLER_NAME)
    ch.setLevel(level)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    # Route warnings.warn(...) into logging as 'py.warnings'
    logging.captureWarnings(True)
