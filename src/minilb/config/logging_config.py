from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"minilb: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Bracketed lowercase level tags with UTC timestamps of the record."""

    def formatTime(self, record, datefmt=None):
        """Format the record time as UTC ISO-8601 with Z suffix."""
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ts.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    if isinstance(syslog_cfg, dict):
        address = syslog_cfg.get("address", "/dev/log")
        if isinstance(address, (list, tuple)):
            address = (str(address[0]), int(address[1]))
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
            logging.handlers.SysLogHandler.LOG_USER,
        )
    else:
        address = "/dev/log"
        facility = logging.handlers.SysLogHandler.LOG_USER
    return logging.handlers.SysLogHandler(address=address, facility=facility)


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize the root logger from the logging section of the settings.

    Args:
        cfg: Mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: append-mode log file path
            - syslog: True, or a dict with address (socket path or
              [host, port]) and facility

    Example config:
        {"level": "debug", "stderr": True, "file": "/var/log/minilb.log"}
    """
    cfg = cfg or {}

    level = _LEVELS.get(str(cfg.get("level", "info")).lower(), logging.INFO)
    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)

    # Re-initialization replaces handlers instead of stacking them.
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            syslog_handler = _syslog_handler(syslog_cfg)
            syslog_handler.setFormatter(SyslogFormatter())
            root.addHandler(syslog_handler)
        except (OSError, ValueError) as e:  # pragma: no cover - depends on host syslog
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
