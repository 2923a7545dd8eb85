import json
import logging
import uuid

from reliefphotos.events import EVENTS_LOGGER, events
from reliefphotos.logging_config import ColoredFormatter, LoggingSettings, build_logging_config


def test_event_fields_are_flattened(caplog):
    caplog.set_level(logging.INFO, logger=EVENTS_LOGGER)

    events.emit("photo_served", photo_id="abc123", tier="disk", size="w200")

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry["event"] == "photo_served"
    assert entry["photo_id"] == "abc123"
    assert entry["tier"] == "disk"
    assert entry["size"] == "w200"
    assert "timestamp" in entry


def test_event_serializes_non_json_values(caplog):
    caplog.set_level(logging.INFO, logger=EVENTS_LOGGER)
    value = uuid.uuid4()

    events.emit("photo_uploaded", photo_id=value)

    assert json.loads(caplog.records[-1].getMessage())["photo_id"] == str(value)


def test_event_level_is_respected(caplog):
    caplog.set_level(logging.INFO, logger=EVENTS_LOGGER)

    events.emit("cache_lookup", level=logging.DEBUG, photo_id="x")
    events.emit("store_down", level=logging.WARNING, photo_id="y")

    assert [r.levelno for r in caplog.records] == [logging.WARNING]
    assert json.loads(caplog.records[0].getMessage())["event"] == "store_down"


def test_colored_formatter_restores_levelname():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)

    out = ColoredFormatter("%(levelname)s %(message)s").format(record)

    assert "\x1b[33mWARNING\x1b[0m careful" == out
    assert record.levelname == "WARNING"


def test_logging_config_from_settings():
    cfg = build_logging_config(LoggingSettings(level="debug", colored=False))

    assert cfg["root"]["level"] == "DEBUG"
    assert "()" not in cfg["formatters"]["text"]
    assert cfg["loggers"][EVENTS_LOGGER] == {"handlers": ["events"], "level": "DEBUG", "propagate": False}
    assert cfg["loggers"]["botocore"]["level"] == "WARNING"


def test_logging_settings_read_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("LOG_COLORED", "false")

    settings = LoggingSettings()

    assert settings.level == "WARNING"
    assert settings.colored is False
