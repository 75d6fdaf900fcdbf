"""Logging setup shared by the API process and scripts."""

import logging

from backend.app.core.settings import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install one stream handler on the root logger; repeated calls are no-ops."""
    global _configured
    if _configured:
        return
    settings = get_settings()
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    _configured = True
