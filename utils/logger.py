"""Central logging setup.

Only the project root logger ``agent_webhook`` owns handlers; module loggers
obtained through :func:`get_logger` propagate to it, so configuration happens
once no matter how many modules import this.

Environment overrides:
    AGENT_WEBHOOK_LOG_LEVEL  console level (DEBUG / INFO / WARNING / ... or numeric)
    AGENT_WEBHOOK_LOG_JSON   truthy -> emit JSON lines instead of text
"""

from __future__ import annotations

import json
import logging
import os
import time

ROOT_LOGGER_NAME = "agent_webhook"

FORMAT = "%(asctime)s | %(name)s | %(process)d | %(levelname)-8s | %(message)s"
DTFMT = "%Y-%m-%d %H:%M:%S"


def _is_truthy(val):
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def _parse_level(val, default=logging.INFO):
    """Accept a level name ("INFO") or number ("20"); fall back to *default*."""
    if not val or not val.strip():
        return default
    s = val.strip()
    if s.isdigit():
        return int(s)
    level = logging.getLevelName(s.upper())
    return level if isinstance(level, int) else default


class _JsonFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(record.created)),
            "name": record.name,
            "pid": record.process,
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _configure_root(root):
    handler = logging.StreamHandler()
    handler.setLevel(_parse_level(os.getenv("AGENT_WEBHOOK_LOG_LEVEL")))
    if _is_truthy(os.getenv("AGENT_WEBHOOK_LOG_JSON")):
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=FORMAT, datefmt=DTFMT))
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    root.propagate = False


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the project root, configuring the root on first use.

    Module names like ``stages.sync`` are mapped to ``agent_webhook.stages.sync``
    so they share the root's handlers.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        _configure_root(root)

    if name is None or name == ROOT_LOGGER_NAME:
        return root
    if not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
