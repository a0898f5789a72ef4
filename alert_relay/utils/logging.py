"""Logging setup shared by the API process and the CLI."""

import logging
import sys

from alert_relay.config import settings

_NOISY_LOGGERS = ("httpx", "httpcore", "telegram", "apscheduler")


def setup_logging(level: str | None = None):
    """Configure the root logger once. Safe to call more than once."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    root.setLevel(level_name)

    if not any(getattr(h, "_alert_relay", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
        handler._alert_relay = True
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
