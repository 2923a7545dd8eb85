import json
import logging
from datetime import UTC, datetime
from typing import Any

EVENTS_LOGGER = "reliefphotos.events"


class EventLogger:
    """Writes one JSON object per domain event to the ``reliefphotos.events`` logger.

    Fields are flattened next to ``event`` and ``timestamp``; values that JSON
    cannot encode are written with ``str()``.
    """

    def __init__(self, name: str = EVENTS_LOGGER):
        self._logger = logging.getLogger(name)

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        payload = {"timestamp": datetime.now(UTC).isoformat(), "event": event, **fields}
        self._logger.log(level, json.dumps(payload, default=str))


events = EventLogger()

__all__ = ["EVENTS_LOGGER", "EventLogger", "events"]
