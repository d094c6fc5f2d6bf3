"""Event logging helpers."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("studychat.events")


def log_event(event_type: str, level: int = logging.INFO, **payload: Any) -> None:
    fields = " ".join(f"{key}={value!r}" for key, value in sorted(payload.items()))
    logger.log(level, "%s %s", event_type, fields, extra={"event_type": event_type, "payload": payload})
