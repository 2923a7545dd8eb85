import logging
from logging import config as logging_config

from pydantic_settings import BaseSettings, SettingsConfigDict

from reliefphotos.events import EVENTS_LOGGER

# The AWS SDK and Pillow are chatty at INFO
NOISY_LOGGERS = ("botocore", "boto3", "aiobotocore", "urllib3", "PIL")


class LoggingSettings(BaseSettings):
    level: str = "INFO"
    colored: bool = True

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI color."""

    COLOR_MAP = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = f"{self.COLOR_MAP.get(levelname, '')}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def build_logging_config(settings: LoggingSettings) -> dict:
    """dictConfig for the app, uvicorn and the JSON events stream.

    Events are written as bare JSON lines so log shippers can parse them.
    """
    level = settings.level.upper()
    text = {"format": "%(asctime)s %(levelname)-5s [%(name)s] %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}
    if settings.colored:
        text["()"] = "reliefphotos.logging_config.ColoredFormatter"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": text,
            "json": {"format": "%(message)s"},
        },
        "handlers": {
            "stdout": {"class": "logging.StreamHandler", "formatter": "text", "stream": "ext://sys.stdout"},
            "events": {"class": "logging.StreamHandler", "formatter": "json", "stream": "ext://sys.stdout"},
        },
        "loggers": {
            EVENTS_LOGGER: {"handlers": ["events"], "level": level, "propagate": False},
            "uvicorn": {"handlers": ["stdout"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["stdout"], "level": level, "propagate": False},
            **{name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        },
        "root": {"handlers": ["stdout"], "level": level},
    }


def configure_logging(settings: LoggingSettings | None = None) -> None:
    logging_config.dictConfig(build_logging_config(settings or LoggingSettings()))


__all__ = ["ColoredFormatter", "LoggingSettings", "build_logging_config", "configure_logging"]
