"""Annual operating plan (POA) items: creation and quick progress/spend updates."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Iterable, Mapping

from crud_engine import CrudEngine
from lifeos.catalog import POA_ITEMS, POA_UPDATES
from lifeos.errors import NotFoundError, PersistError
from lifeos.fields import FieldKind, coerce_input, deployment_timezone, to_number


logger = logging.getLogger("lifeos.poa")

DEFAULT_UNIT = "unidades"
INITIAL_STATUS = "Plan"


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    parsed = coerce_input(FieldKind.NUMBER, value)
    if parsed is None or math.isnan(parsed):
        return None
    return parsed


def clamp_progress(value: float) -> float:
    return max(0.0, min(100.0, value))


def quick_update(
    engine: CrudEngine,
    item_id: Any,
    progress: Any = None,
    spend_delta: Any = None,
    status: Any = None,
    note: Any = None,
) -> dict:
    """Apply a partial patch to a POA item and append an audit row.

    ``spend_delta`` is added to the stored spend with a read-then-write, so two
    concurrent updates on one item can lose one of the increments.
    """
    result = {"updated": False, "patch": {}, "audited": False}
    item_id = "" if item_id is None else str(item_id).strip()
    if not item_id:
        return result

    try:
        current = engine.get(POA_ITEMS, item_id)
        if current is None:
            raise NotFoundError("POA item not found", storage_name=POA_ITEMS.storage_name, key=item_id)
    except NotFoundError as exc:
        logger.warning("poa_quick_update_skipped item_id=%s error=%s", item_id, exc)
        return result

    progress_value = _optional_number(progress)
    delta = _optional_number(spend_delta) or 0.0
    status_value = "" if status is None else str(status).strip()
    note_value = "" if note is None else str(note).strip()

    patch: dict = {}
    if progress_value is not None:
        patch["progress"] = clamp_progress(progress_value)
    if status_value:
        patch["status"] = status_value
    if delta > 0:
        patch["spent"] = to_number(current.get("spent")) + delta

    if patch:
        engine.patch(POA_ITEMS, item_id, patch)
        result["updated"] = True
        result["patch"] = patch

    if patch or note_value:
        audit = {
            "item_id": item_id,
            "progress": patch.get("progress"),
            "spent_delta": delta if delta > 0 else None,
            "note": note_value or None,
        }
        try:
            engine.insert_values(POA_UPDATES, audit)
            result["audited"] = True
        except PersistError as exc:
            logger.warning("poa_audit_failed item_id=%s error=%s", item_id, exc)
    return result


def planned_months(values: Iterable[Any] | None) -> list[int]:
    months: list[int] = []
    for raw in values or []:
        month = to_number(raw, 0.0)
        if month.is_integer() and 1 <= month <= 12:
            months.append(int(month))
    return months


def create_item(engine: CrudEngine, raw: Mapping[str, Any], months: Iterable[Any] | None = None) -> Any:
    def text(key: str) -> str:
        value = raw.get(key)
        return "" if value is None else str(value).strip()

    current_year = datetime.now(deployment_timezone()).year
    values = {
        "year": int(to_number(raw.get("year"), current_year) or current_year),
        "area": text("area"),
        "objective": text("objective"),
        "activity": text("activity"),
        "indicator": text("indicator"),
        "unit": text("unit") or DEFAULT_UNIT,
        "baseline": to_number(raw.get("baseline"), 0.0),
        "target": to_number(raw.get("target"), 0.0),
        "responsible": text("responsible") or None,
        "budget": to_number(raw.get("budget"), 0.0),
        "planned_months": planned_months(months),
        "progress": 0,
        "spent": 0,
        "status": INITIAL_STATUS,
    }
    if not values["area"] or not values["objective"] or not values["activity"] or not values["indicator"]:
        return None
    if values["target"] <= 0:
        return None
    return engine.insert_values(POA_ITEMS, values)
