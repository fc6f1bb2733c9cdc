# core/events.py

"""
Optional observer hook for the stores and the batch coordinator.

Components take an `EventSink` at construction instead of reaching for a global logger or
dashboard. A sink is any callable accepting an event name and a payload dictionary.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict[str, Any]], None]


def emit(observer: EventSink | None, event: str, **payload: Any) -> None:
    """
    Delivers an event to `observer`, if one was supplied.

    Observer failures are logged and never propagate into the write path that emitted them.
    """
    if observer is None:
        return

    try:
        observer(event, payload)

    except Exception:
        logger.exception("Observer failed while handling event %r", event)
