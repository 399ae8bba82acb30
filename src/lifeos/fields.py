"""Field descriptors and raw form text coercion.

Every editable attribute is declared by a ``FieldDescriptor``. Its ``kind``
decides how raw form text becomes a stored value (``coerce_input``) and how a
stored value is rendered back (``format_for_display``).

Empty or whitespace-only text is always absent (``None``), for every kind.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from .errors import ValidationError


ABSENT = None
ABSENT_PLACEHOLDER = "-"

_TIMEZONE_NAME = os.getenv("LIFEOS_TIMEZONE", "America/Santo_Domingo").strip() or "America/Santo_Domingo"


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime"
    SELECT = "select"
    IDENTIFIER = "identifier"
    LIST_OF_TEXT = "list_of_text"
    LIST_OF_NUMBER = "list_of_number"

    @property
    def is_list(self) -> bool:
        return self in (FieldKind.LIST_OF_TEXT, FieldKind.LIST_OF_NUMBER)


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    options: tuple[str, ...] = ()
    required: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("field name must be a non-empty string")
        if not isinstance(self.kind, FieldKind):
            object.__setattr__(self, "kind", FieldKind(self.kind))
        object.__setattr__(self, "options", tuple(self.options))
        if self.kind is FieldKind.SELECT and not self.options:
            raise ValueError(f"select field {self.name} requires options")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "kind": self.kind.value,
            "options": list(self.options),
            "required": self.required,
        }


def deployment_timezone() -> ZoneInfo:
    return ZoneInfo(_TIMEZONE_NAME)


def _clean(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def parse_number(text: str) -> float:
    """Parse ``text`` as a finite float; anything else yields ``nan``."""
    try:
        value = float(text.strip())
    except (TypeError, ValueError):
        return math.nan
    if not math.isfinite(value):
        return math.nan
    return value


def to_number(value: Any, fallback: float = 0.0) -> float:
    """Read a stored or raw value as a finite float, ``fallback`` otherwise."""
    if isinstance(value, bool) or value is None:
        return fallback
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else fallback
    parsed = parse_number(str(value))
    return fallback if math.isnan(parsed) else parsed


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _to_utc_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(text: str, tz: ZoneInfo | None = None) -> str | None:
    """Read a wall-clock timestamp in ``tz`` and return it as a UTC ISO string."""
    candidate = text.strip()
    if candidate.endswith("Z") or candidate.endswith("z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(candidate)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=tz or deployment_timezone())
        return _to_utc_iso(moment)
    except (ValueError, OverflowError):
        # unparseable, or shifts past year 1 or 9999 in UTC
        return None


def coerce_input(kind: FieldKind, raw: Any) -> Any:
    text = _clean(raw)
    if text == "":
        return ABSENT
    kind = FieldKind(kind)
    if kind is FieldKind.NUMBER:
        return parse_number(text)
    if kind is FieldKind.DATETIME:
        return parse_datetime(text)
    if kind is FieldKind.LIST_OF_TEXT:
        return [part.strip() for part in text.split(",") if part.strip()]
    if kind is FieldKind.LIST_OF_NUMBER:
        numbers = [parse_number(part) for part in text.split(",") if part.strip()]
        return [n for n in numbers if not math.isnan(n)]
    # text, date, select and identifier pass through verbatim
    return text


def coerce_field(field: FieldDescriptor, raw: Any, enforce_options: bool = False) -> Any:
    value = coerce_input(field.kind, raw)
    if is_nan(value):
        if field.required:
            raise ValidationError(f"{field.label} must be a number", field=field.name)
        value = ABSENT
    if value is ABSENT and field.required:
        raise ValidationError(f"{field.label} is required", field=field.name)
    if enforce_options and field.kind is FieldKind.SELECT and value is not ABSENT and value not in field.options:
        raise ValidationError(f"{field.label} must be one of {list(field.options)}", field=field.name)
    return value


def format_number(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ABSENT_PLACEHOLDER
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _format_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return str(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    try:
        return moment.astimezone(deployment_timezone()).strftime("%Y-%m-%d %H:%M")
    except (ValueError, OverflowError):
        return str(value)


def format_for_display(kind: FieldKind, value: Any) -> str:
    if value is ABSENT or is_nan(value):
        return ABSENT_PLACEHOLDER
    kind = FieldKind(kind)
    if kind.is_list:
        if not isinstance(value, (list, tuple)):
            return str(value)
        if kind is FieldKind.LIST_OF_NUMBER:
            return ", ".join(format_number(item) for item in value)
        return ", ".join(str(item) for item in value)
    if kind is FieldKind.NUMBER:
        return format_number(value)
    if kind is FieldKind.DATETIME:
        return _format_datetime(value)
    if kind is FieldKind.DATE and isinstance(value, date):
        return value.isoformat()
    return str(value)
