from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logging(log_dir: str = os.path.join(".webkernel", "logs"), *, verbose: bool = False) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger("wkpm")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    text_path = os.path.abspath(os.path.join(log_dir, "wkpm.log"))
    for old in [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]:
        # one log file per application root
        if old.baseFilename != text_path:
            logger.removeHandler(old)
            old.close()

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        h = RotatingFileHandler(text_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)

    if verbose and not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler) for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(sh)

    return logger
