import logging
import logging.config

from intake.config import settings


class PipelineFormatter(logging.Formatter):
    def format(self, record):
        # Broken third-party format strings should not take the request down with them.
        try:
            record.getMessage()
        except (TypeError, ValueError):
            record.args = ()
        return super().format(record)


def setup_logging(level: str | None = None) -> logging.Logger:
    debug_mode = (level or settings.log_level).lower() == "debug"
    loglevel = logging.DEBUG if debug_mode else getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": PipelineFormatter,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "intake": {"handlers": ["console"], "level": loglevel, "propagate": False},
        },
    })

    # Suppress httpx request logs unless in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)
    # PIL logs every plugin import at debug level
    logging.getLogger("PIL").setLevel(logging.WARNING)

    return logging.getLogger("intake")
