"""Debt ledger: payments against debts and the derived open/closed status.

A debt is closed when the sum of its payments reaches its amount. The status is
stored on the debt row and recomputed after every mutation that can move
either side of that comparison. The recompute is a read-then-write sequence
without a transaction; concurrent payments on the same debt can race, and
running ``recompute_status`` again converges to the right status.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any, Mapping

from crud_engine import CrudEngine
from lifeos.catalog import DEBT_CLOSED, DEBT_OPEN, DEBT_PAYMENTS, DEBT_STATUSES, DEBTS
from lifeos.errors import NotFoundError, ReadError, ValidationError
from lifeos.fields import FieldKind, coerce_input, deployment_timezone, to_number


logger = logging.getLogger("lifeos.debts")


def _text(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    return "" if value is None else str(value).strip()


def _today() -> date:
    return datetime.now(deployment_timezone()).date()


def derived_status(amount: Any, paid: float) -> str:
    return DEBT_CLOSED if paid >= to_number(amount) else DEBT_OPEN


def total_paid(payments: list[dict]) -> float:
    return sum(to_number(p.get("amount")) for p in payments)


def recompute_status(engine: CrudEngine, debt_id: Any) -> str | None:
    """Bring the stored status of ``debt_id`` in line with its payments.

    Missing debts and failed reads are logged and skipped. A failed status
    update propagates.
    """
    debt_id = "" if debt_id is None else str(debt_id).strip()
    if not debt_id:
        return None
    try:
        debt = engine.get(DEBTS, debt_id)
        if debt is None:
            raise NotFoundError("Debt not found", storage_name=DEBTS.storage_name, key=debt_id)
        payments = engine.select_where(DEBT_PAYMENTS, {"debt_id": debt_id})
    except (NotFoundError, ReadError) as exc:
        logger.warning("debt_recompute_skipped debt_id=%s error=%s", debt_id, exc)
        return None

    paid = total_paid(payments)
    should = derived_status(debt.get("amount"), paid)
    if should != debt.get("status"):
        engine.patch(DEBTS, debt_id, {"status": should})
        logger.info("debt_status_changed debt_id=%s from=%s to=%s paid=%s", debt_id, debt.get("status"), should, paid)
    return should


def create_debt(engine: CrudEngine, raw: Mapping[str, Any]) -> Any:
    concept = _text(raw, "concept")
    creditor = _text(raw, "creditor")
    amount = to_number(raw.get("amount"), 0.0)
    if not concept or not creditor or amount <= 0:
        return None
    values = {
        "concept": concept,
        "creditor": creditor,
        "amount": amount,
        "status": DEBT_OPEN,
        "due_date": coerce_input(FieldKind.DATE, raw.get("due_date")),
    }
    return engine.insert_values(DEBTS, values)


def payment_timestamp(raw_date: Any) -> str:
    """Payments are dated by calendar day and stored at noon UTC of that day."""
    text = "" if raw_date is None else str(raw_date).strip()
    if not text:
        day = _today()
    else:
        try:
            day = date.fromisoformat(text[:10])
        except ValueError as exc:
            raise ValidationError("Payment date must be YYYY-MM-DD", field="paid_at") from exc
    return f"{day.isoformat()}T12:00:00.000Z"


def add_payment(engine: CrudEngine, debt_id: Any, raw: Mapping[str, Any]) -> Any:
    debt_id = "" if debt_id is None else str(debt_id).strip()
    amount = to_number(raw.get("amount"), 0.0)
    if not debt_id or amount <= 0:
        return None
    values = {
        "debt_id": debt_id,
        "amount": amount,
        "paid_at": payment_timestamp(raw.get("paid_at")),
        "note": _text(raw, "note") or None,
    }
    payment_id = engine.insert_values(DEBT_PAYMENTS, values)
    recompute_status(engine, debt_id)
    return payment_id


def delete_payment(engine: CrudEngine, payment_id: Any, debt_id: Any = None) -> None:
    if not payment_id:
        return
    engine.delete(DEBT_PAYMENTS, payment_id)
    if debt_id:
        recompute_status(engine, debt_id)


def adjust_amount(engine: CrudEngine, debt_id: Any, raw_amount: Any) -> bool:
    amount = coerce_input(FieldKind.NUMBER, raw_amount)
    if not debt_id or amount is None or math.isnan(amount) or amount < 0:
        return False
    engine.patch(DEBTS, debt_id, {"amount": amount})
    recompute_status(engine, debt_id)
    return True


def set_status(engine: CrudEngine, debt_id: Any, status: Any) -> None:
    if not debt_id:
        return
    status = (str(status).strip() if status is not None else "") or DEBT_OPEN
    if status not in DEBT_STATUSES:
        raise ValidationError(f"Status must be one of {list(DEBT_STATUSES)}", field="status")
    engine.patch(DEBTS, debt_id, {"status": status})


def delete_debt(engine: CrudEngine, debt_id: Any) -> None:
    if not debt_id:
        return
    engine.delete_where(DEBT_PAYMENTS, {"debt_id": str(debt_id)})
    engine.delete(DEBTS, debt_id)


def _payment_changed(engine: CrudEngine, operation: str, key: str, values: dict, before: dict | None) -> None:
    debt_ids = {str(v) for v in ((values or {}).get("debt_id"), (before or {}).get("debt_id")) if v}
    for debt_id in sorted(debt_ids):
        recompute_status(engine, debt_id)


def _debt_changed(engine: CrudEngine, operation: str, key: str, values: dict, before: dict | None) -> None:
    if operation in ("create", "update"):
        recompute_status(engine, key)


def register_hooks(engine: CrudEngine) -> None:
    """Keep debt status derived when debts or payments change through generic record edits."""
    engine.register_hook(DEBT_PAYMENTS, _payment_changed, needs_before=True)
    engine.register_hook(DEBTS, _debt_changed)
