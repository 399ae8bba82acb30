"""In-process bus for refresh signals emitted after record mutations."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List


Event = Dict[str, Any]
Handler = Callable[[Event], None]

RECORDS_CHANGED = "records.changed"
OPERATIONS = ("create", "update", "delete")

logger = logging.getLogger("lifeos.events")


@dataclass
class EventError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class EventValidationError(EventError):
    code: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise EventValidationError(code=code, message=message, path=path)


def _validate_occurred_at(value: Any) -> None:
    if not isinstance(value, str) or not value.endswith("Z"):
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be a UTC string ending with 'Z'", "meta.occurred_at")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be ISO8601", "meta.occurred_at")


def validate_event(event: Any) -> None:
    if not isinstance(event, dict):
        _raise("EVENT_INVALID", "event must be object")
    name = event.get("name")
    if not isinstance(name, str) or not name:
        _raise("EVENT_NAME_INVALID", "name must be non-empty string", "name")

    payload = event.get("payload")
    if not isinstance(payload, dict):
        _raise("PAYLOAD_INVALID", "payload must be an object", "payload")
    if name == RECORDS_CHANGED:
        if not isinstance(payload.get("storage_name"), str) or not payload.get("storage_name"):
            _raise("PAYLOAD_INVALID", "storage_name must be non-empty string", "payload.storage_name")
        if payload.get("operation") not in OPERATIONS:
            _raise("PAYLOAD_INVALID", f"operation must be one of {list(OPERATIONS)}", "payload.operation")

    meta = event.get("meta")
    if not isinstance(meta, dict):
        _raise("META_INVALID", "meta must be object", "meta")
    if not isinstance(meta.get("event_id"), str):
        _raise("META_EVENT_ID_INVALID", "event_id must be string", "meta.event_id")
    _validate_occurred_at(meta.get("occurred_at"))


def make_event(name: str, payload: dict, meta: dict | None = None) -> Event:
    meta_out = copy.deepcopy(meta) if isinstance(meta, dict) else {}
    meta_out.setdefault("event_id", str(uuid.uuid4()))
    if "occurred_at" not in meta_out:
        meta_out["occurred_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    event = {
        "name": name,
        "payload": copy.deepcopy(payload),
        "meta": meta_out,
    }
    validate_event(event)
    return event


def records_changed(storage_name: str, operation: str, record_id: Any = None) -> Event:
    payload = {"storage_name": storage_name, "operation": operation, "record_id": record_id}
    return make_event(RECORDS_CHANGED, payload)


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subs.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        handlers = self._subs.get(name)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
            if not handlers:
                del self._subs[name]
            return True
        except ValueError:
            return False

    def publish(self, event: dict) -> None:
        validate_event(event)
        for handler in self._subs.get(event["name"], []):
            try:
                handler(event)
            except Exception as exc:
                # A failing subscriber never undoes a committed mutation.
                logger.warning("event_handler_failed name=%s error=%s", event["name"], exc)
