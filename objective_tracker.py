"""Objective progress updates that touch only progress and status."""

from __future__ import annotations

import logging
from typing import Any

from crud_engine import CrudEngine
from lifeos.catalog import OBJECTIVES
from poa_tracker import clamp_progress


logger = logging.getLogger("lifeos.objectives")

DEFAULT_STATUS = "En curso"


def update_progress(engine: CrudEngine, objective_id: Any, progress: Any = None, status: Any = None) -> dict:
    """Patch ``progress`` (clamped to 0..100, blank or garbage is 0) and ``status``.

    Every other column is left as stored. Returns the written values, or an
    empty dict when the id is empty.
    """
    objective_id = "" if objective_id is None else str(objective_id).strip()
    if not objective_id:
        return {}
    values = engine.coerce_partial(OBJECTIVES, {"progress": progress, "status": status})
    values["progress"] = clamp_progress(values.get("progress") or 0.0)
    values["status"] = values.get("status") or DEFAULT_STATUS
    engine.patch(OBJECTIVES, objective_id, values)
    logger.info("objective_progress id=%s progress=%s status=%s", objective_id, values["progress"], values["status"])
    return values
