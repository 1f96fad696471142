# /chatflow/utils/events.py

import logging
from typing import Any, Callable, Dict, List

import structlog

from chatflow.utils.metrics import (
    flow_actions_counter,
    flow_errors_counter,
    flow_retries_counter,
    flow_steps_counter,
    learning_events_counter,
    match_confidence_histogram,
)

# Structured events emitted by the engines for external logging. Listeners
# receive (event_name, fields); a failing listener never breaks message handling.

logger = logging.getLogger(__name__)

EventListener = Callable[[str, Dict[str, Any]], None]


class EventEmitter:
    def __init__(self):
        self._log = structlog.get_logger("chatflow.events")
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: str, **fields: Any) -> None:
        self._log.info(event, **fields)
        self._record_metrics(event, fields)
        for listener in list(self._listeners):
            try:
                listener(event, fields)
            except Exception as e:
                logger.warning(f"Event listener failed for {event}: {e}", exc_info=True)

    def _record_metrics(self, event: str, fields: Dict[str, Any]) -> None:
        if event == "flow.step":
            flow_steps_counter.labels(step_type=fields.get("step_type", "unknown")).inc()
        elif event == "flow.action":
            flow_actions_counter.labels(action=fields.get("action", "unknown")).inc()
        elif event == "flow.error":
            flow_errors_counter.labels(kind=fields.get("kind", "unknown")).inc()
        elif event == "flow.retry":
            flow_retries_counter.labels(step_type=fields.get("step_type", "unknown")).inc()
        elif event == "match.scored":
            match_confidence_histogram.observe(fields.get("confidence", 0.0))
        elif event.startswith("learning."):
            learning_events_counter.labels(status=event.split(".", 1)[1]).inc()
