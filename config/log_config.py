# config/log_config.py

from __future__ import annotations

import copy
import logging
import logging.config
import os
from typing import Any, Dict, Optional, Union

# -----------------------------
# Niveau custom "SUCCESS"
# -----------------------------
SUCCESS_LEVEL = 25  # entre INFO (20) et WARNING (30)
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def success(self: logging.Logger, msg: str, *args: Any, **kwargs: Any) -> None:
    if self.isEnabledFor(SUCCESS_LEVEL):
        self._log(SUCCESS_LEVEL, msg, args, **kwargs)


if not hasattr(logging.Logger, "success"):
    setattr(logging.Logger, "success", success)


LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            # threadName : scan continu et pont HTTP tournent hors du thread principal
            "format": "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "level": "DEBUG",
            # stdout est réservé à la sortie JSON du CLI
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        # Tesseract / Vision / aiohttp sont bavards en DEBUG
        "PIL": {"level": "INFO"},
        "aiohttp.access": {"level": "WARNING"},
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
}


def resolve_level(level: Optional[Union[int, str]] = None) -> int:
    """Niveau explicite, sinon LABEL_LOG_LEVEL, sinon INFO."""
    if level is None:
        level = os.getenv("LABEL_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Optional[Union[int, str]] = None) -> None:
    """Initialise la configuration de logging de l'application."""
    numeric_level = resolve_level(level)
    try:
        config = copy.deepcopy(LOGGING_CONFIG)
        config["root"]["level"] = logging.getLevelName(numeric_level)
        logging.config.dictConfig(config)

        logger = logging.getLogger(__name__)
        logger.debug("Logging initialisé (niveau=%s).", logging.getLevelName(numeric_level))
        logger.success("Niveau SUCCESS activé (niveau=%s).", SUCCESS_LEVEL)

    except (ValueError, TypeError, AttributeError, ImportError):
        # Filet de sécurité : ne jamais casser l'app à cause du logging
        logging.basicConfig(level=numeric_level)
        logging.getLogger(__name__).exception("Échec setup_logging, fallback basicConfig.")
