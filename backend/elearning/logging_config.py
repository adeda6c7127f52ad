import logging
import os
from logging.config import dictConfig
from typing import Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"

# component logger -> env var overriding its level
COMPONENT_LEVEL_ENV: Dict[str, str] = {
    "elearning.resolver": "ELEARNING_RESOLVER_LOG_LEVEL",
    "elearning.migration": "ELEARNING_MIGRATION_LOG_LEVEL",
    "elearning.store": "ELEARNING_STORE_LOG_LEVEL",
}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root and component loggers from ``ELEARNING_*`` environment flags.

    Telemetry lines get their own handler and do not propagate, so they are
    never printed twice. ``ELEARNING_TELEMETRY_LOG=0`` silences them.
    """
    root_level = (level or os.getenv("ELEARNING_LOG_LEVEL", "INFO")).upper()
    telemetry_level = "INFO" if os.getenv("ELEARNING_TELEMETRY_LOG", "1") == "1" else "WARNING"

    loggers = {
        name: {"level": os.getenv(env, root_level).upper()} for name, env in COMPONENT_LEVEL_ENV.items()
    }
    loggers["elearning.telemetry"] = {
        "level": telemetry_level,
        "handlers": ["telemetry"],
        "propagate": False,
    }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": os.getenv("ELEARNING_LOG_FORMAT", DEFAULT_LOG_FORMAT)},
                "telemetry": {"format": TELEMETRY_LOG_FORMAT},
            },
            "handlers": {
                "default": {"class": "logging.StreamHandler", "formatter": "default"},
                "telemetry": {"class": "logging.StreamHandler", "formatter": "telemetry"},
            },
            "root": {"handlers": ["default"], "level": root_level},
            "loggers": loggers,
        }
    )

    if os.getenv("ELEARNING_DEBUG_HTTP", "0") == "1":
        logging.getLogger("httpx").setLevel(logging.DEBUG)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
