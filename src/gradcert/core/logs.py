from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .io import ensure_dir

FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def init_logger(
    name: str = "gradcert", level: str = "INFO", log_file: Optional[Path | str] = None
) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the package logger.
    Repeated calls only adjust the level.
    """
    log = logging.getLogger(name)
    lvl = getattr(logging, level.upper(), logging.INFO)
    log.setLevel(lvl)
    # Avoid adding multiple handlers on repeated runs
    if not log.handlers:
        fmt = logging.Formatter(FORMAT)
        ch = logging.StreamHandler()
        ch.setLevel(lvl)
        ch.setFormatter(fmt)
        log.addHandler(ch)
        if log_file is not None:
            ensure_dir(Path(log_file).parent)
            fh = logging.FileHandler(log_file)
            fh.setLevel(lvl)
            fh.setFormatter(fmt)
            log.addHandler(fh)
    else:
        for h in log.handlers:
            h.setLevel(lvl)
    return log
