import logging
from logging.config import dictConfig


def configure_logging(app):
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    if app.config.get("ENVIRONMENT") == "production":
        fmt = '{"ts": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "msg": %(message)r}'
    else:
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": fmt}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "root": {"level": level, "handlers": ["console"]},
    })
    logging.getLogger("audit").setLevel(level)
    app.logger.setLevel(level)
