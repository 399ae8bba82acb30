"""Dashboard figures computed from fetched rows."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from debt_ledger import total_paid
from lifeos.fields import deployment_timezone, to_number


POA_RISK_MARGIN = 15.0
INCOME_KIND = "Ingreso"


def _pct(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return max(0.0, min(100.0, part / whole * 100.0))


def debt_overview(debts: list[dict], payments: list[dict]) -> dict:
    by_debt: dict[str, list[dict]] = {}
    for payment in payments:
        by_debt.setdefault(str(payment.get("debt_id")), []).append(payment)

    rows = []
    for debt in debts:
        debt_payments = by_debt.get(str(debt.get("id")), [])
        amount = to_number(debt.get("amount"))
        paid = total_paid(debt_payments)
        rows.append(
            {
                "debt": debt,
                "payments": debt_payments,
                "paid": paid,
                "remaining": max(0.0, amount - paid),
                "pct": _pct(paid, amount),
            }
        )

    total_debt = sum(to_number(r["debt"].get("amount")) for r in rows)
    total_paid_all = sum(r["paid"] for r in rows)
    return {
        "rows": rows,
        "total_debt": total_debt,
        "total_paid": total_paid_all,
        "total_remaining": sum(r["remaining"] for r in rows),
        "total_pct": total_paid_all / total_debt * 100.0 if total_debt > 0 else 0.0,
    }


def poa_overview(items: list[dict], month: int, area: str | None = None, status: str | None = None) -> dict:
    """KPIs for one year of POA items.

    An item is at risk when its progress trails the linear expectation for
    ``month`` by more than ``POA_RISK_MARGIN`` points.
    """
    areas = sorted({str(it.get("area")) for it in items if it.get("area")})
    selected = [
        it
        for it in items
        if (not area or it.get("area") == area) and (not status or it.get("status") == status)
    ]
    total_budget = sum(to_number(it.get("budget")) for it in selected)
    total_spent = sum(to_number(it.get("spent")) for it in selected)
    expected = month / 12.0 * 100.0
    at_risk = [it for it in selected if to_number(it.get("progress")) + POA_RISK_MARGIN < expected]
    return {
        "items": selected,
        "areas": areas,
        "total_budget": total_budget,
        "total_spent": total_spent,
        "execution_pct": total_spent / total_budget * 100.0 if total_budget > 0 else 0.0,
        "avg_progress": sum(to_number(it.get("progress")) for it in selected) / len(selected) if selected else 0.0,
        "expected_progress": expected,
        "at_risk": len(at_risk),
    }


def _parse_moment(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value:
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    tz = deployment_timezone()
    local = now.astimezone(tz)
    last_day = calendar.monthrange(local.year, local.month)[1]
    start = datetime.combine(date(local.year, local.month, 1), time.min, tzinfo=tz)
    end = datetime.combine(date(local.year, local.month, last_day), time.max, tzinfo=tz)
    return start, end


def _moment_in(value: Any, start: datetime, end: datetime) -> bool:
    moment = _parse_moment(value)
    return moment is not None and start <= moment <= end


def _in_range(tx: dict, start: datetime, end: datetime) -> bool:
    return _moment_in(tx.get("date"), start, end)


def finance_overview(
    accounts: list[dict],
    transactions: list[dict],
    now: datetime | None = None,
    goal_from: date | None = None,
    goal_to: date | None = None,
    goal_target: float = 0.0,
    monthly_budget: float = 0.0,
) -> dict:
    now = now or datetime.now(timezone.utc)
    start, end = month_bounds(now)
    month_txs = [t for t in transactions if _in_range(t, start, end)]
    incomes = sum(to_number(t.get("amount")) for t in month_txs if t.get("kind") == INCOME_KIND)
    expenses = sum(to_number(t.get("amount")) for t in month_txs if t.get("kind") != INCOME_KIND)

    starting = sum(to_number(a.get("starting_bal")) for a in accounts)
    running = starting + sum(
        to_number(t.get("amount")) if t.get("kind") == INCOME_KIND else -to_number(t.get("amount"))
        for t in transactions
    )

    goal_from = goal_from or start.date()
    goal_to = goal_to or end.date()
    range_start = datetime.combine(goal_from, time.min, tzinfo=timezone.utc)
    range_end = datetime.combine(goal_to, time.max, tzinfo=timezone.utc)
    goal_incomes = sum(
        to_number(t.get("amount"))
        for t in transactions
        if t.get("kind") == INCOME_KIND and _in_range(t, range_start, range_end)
    )

    return {
        "month_start": start.isoformat(),
        "month_end": end.isoformat(),
        "incomes": incomes,
        "expenses": expenses,
        "net": incomes - expenses,
        "starting_balance": starting,
        "running_balance": running,
        "goal": {
            "from": goal_from.isoformat(),
            "to": goal_to.isoformat(),
            "target": goal_target,
            "incomes": goal_incomes,
            "pct": _pct(goal_incomes, goal_target),
        },
        "budget": {
            "monthly": monthly_budget,
            "used_pct": _pct(expenses, monthly_budget),
            "remaining": max(0.0, monthly_budget - expenses),
        },
    }


HOME_CONTACTS = 5
HOME_EVENTS = 5
HOME_EVENT_DAYS = 7
EXPENSE_KIND = "Egreso"


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    tz = deployment_timezone()
    local = now.astimezone(tz).date()
    return datetime.combine(local, time.min, tzinfo=tz), datetime.combine(local, time.max, tzinfo=tz)


def home_overview(
    tasks: list[dict],
    objectives: list[dict],
    transactions: list[dict],
    contacts: list[dict],
    events: list[dict],
    now: datetime | None = None,
) -> dict:
    """Home page cards: today's tasks, this month's goals and money, recent contacts, next week."""
    now = now or datetime.now(timezone.utc)
    day_start, day_end = _day_bounds(now)
    tasks_today = sum(1 for t in tasks if _moment_in(t.get("created_at"), day_start, day_end))

    start, end = month_bounds(now)
    first_day, last_day = start.date().isoformat(), end.date().isoformat()
    # goals whose date span overlaps this month
    active = [
        o
        for o in objectives
        if o.get("start_date") and o.get("end_date")
        and str(o["start_date"])[:10] <= last_day
        and str(o["end_date"])[:10] >= first_day
    ]
    active.sort(key=lambda o: str(o.get("end_date")))
    avg_progress = round(sum(to_number(o.get("progress")) for o in active) / len(active)) if active else 0

    month_txs = [t for t in transactions if _in_range(t, start, end)]
    incomes = sum(to_number(t.get("amount")) for t in month_txs if t.get("kind") == INCOME_KIND)
    expenses = sum(to_number(t.get("amount")) for t in month_txs if t.get("kind") == EXPENSE_KIND)

    horizon = now + timedelta(days=HOME_EVENT_DAYS)
    upcoming = [e for e in events if _moment_in(e.get("start"), now, horizon)]
    upcoming.sort(key=lambda e: _parse_moment(e.get("start")))

    return {
        "tasks_today": tasks_today,
        "objectives": active,
        "objectives_avg_progress": avg_progress,
        "incomes": incomes,
        "expenses": expenses,
        "net": incomes - expenses,
        "contacts": contacts[:HOME_CONTACTS],
        "events": upcoming[:HOME_EVENTS],
    }
