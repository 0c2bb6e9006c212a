import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


def setup_logger(
    path: Path,
    name: str = "asc",
    level: int = logging.INFO,
    to_stderr: bool = False,
    max_bytes: int = 2_000_000,
    backups: int = 3,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    want_stderr = to_stderr or os.environ.get("ASC_LOG_STDOUT") == "1"
    if logger.handlers:
        for h in list(logger.handlers):
            if type(h) is logging.StreamHandler and not want_stderr:
                logger.removeHandler(h)
        if want_stderr and not any(type(h) is logging.StreamHandler for h in logger.handlers):
            logger.addHandler(_stderr_handler())
        return logger
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(path, encoding="utf-8", maxBytes=max_bytes, backupCount=backups)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    except OSError:
        logger.addHandler(logging.NullHandler())
    if want_stderr:
        logger.addHandler(_stderr_handler())
    logger.propagate = False
    return logger


def _stderr_handler() -> logging.Handler:
    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    return sh


def get_logger(name: str = "asc") -> logging.Logger:
    return logging.getLogger(name)
