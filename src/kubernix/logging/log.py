# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path

from .progress import sink

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}


def to_level(name: str) -> int:
    try:
        return LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level '{name}'") from None


def init_logging(
    *,
    level: str = "info",
    base_dir: Path | None = None,
    name: str = "kubernix",
) -> tuple[logging.Logger, str, Path | None]:
    """
    Initializes:
      - the console progress sink at the requested level
      - a full trace log file under base_dir (when given)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())
    console_level = to_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(TRACE)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    console = sink()
    console.setLevel(console_level)
    logger.addHandler(console)

    log_path = None
    if base_dir is not None:
        base_dir.mkdir(parents=True, exist_ok=True)
        log_path = base_dir / f"{name}.log"

        # File = FULL TRACE
        fh = logging.FileHandler(log_path)
        fh.setLevel(TRACE)
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-7s | %(threadName)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(fh)

    ts = datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")
    logger.debug("=== kubernix run started %s ===", ts)
    logger.debug("run_id=%s", run_id)
    if log_path:
        logger.debug("log_file=%s", log_path)

    return logger, run_id, log_path
