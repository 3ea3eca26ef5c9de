"""Root logger configuration for the simulation service.

Console output plus a rotating ``ambulance_sim.log`` (1 MB, 2 backups).
Call :func:`setup_logging` once at process start.
"""
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE = "ambulance_sim.log"


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = LOG_FILE) -> None:
    root = logging.getLogger()
    root.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)

    root.handlers.clear()
    root.addHandler(ch)

    if log_file:
        fh = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=2)
        fh.setFormatter(fmt)
        root.addHandler(fh)
