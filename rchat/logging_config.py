from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text in _LEVELS:
        return _LEVELS[text]
    try:
        return int(text)
    except ValueError:
        return default


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(path: str) -> logging.Handler:
    p = Path(os.path.expanduser(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(p, encoding="utf-8")


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install root handlers for the hub.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)
    rns_level = parse_level(cfg.log_rns_level, logging.WARNING)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = _optional(override_file) if override_file is not None else None
    if log_file is None:
        log_file = _optional(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    fmt = _optional(cfg.log_format) or "%(asctime)s %(levelname)s %(name)s: %(message)s"
    formatter = logging.Formatter(fmt=fmt.strip(), datefmt=_optional(cfg.log_datefmt))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)

    logging.getLogger("RNS").setLevel(rns_level)
    logging.captureWarnings(True)
