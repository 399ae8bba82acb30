"""In-memory row-store for tests and local runs without a database."""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from lifeos.errors import RowStoreError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _same(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return str(left) == str(right)


def _matches(row: dict, filters: dict | None) -> bool:
    if not filters:
        return True
    for key, value in filters.items():
        if not _same(row.get(key), value):
            return False
    return True


def _sort_key(row: dict, order_by: str, seq: int) -> tuple:
    value = row.get(order_by)
    if value is None:
        return (0, "", seq)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, seq)
    return (1, str(value), seq)


class MemoryRowStore:
    """Dict-backed row-store with the same call shape as ``DbRowStore``.

    Rows get a uuid ``id`` and a ``created_at`` stamp on insert. Ties on the
    order column fall back to insertion order.
    Calls are logged to ``calls`` only with ``record_calls``.
    """

    def __init__(self, record_calls: bool = False) -> None:
        self._tables: Dict[str, Dict[str, dict]] = {}
        self._seq: Dict[str, int] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self.record_calls = record_calls
        self.calls: List[tuple] = []
        self.fail_on: set[tuple[str, str]] = set()

    def _check(self, op: str, collection: str) -> None:
        if self.record_calls:
            self.calls.append((op, collection))
        if (op, collection) in self.fail_on or (op, "*") in self.fail_on:
            raise RowStoreError(f"{op} on {collection} failed")

    def _table(self, collection: str) -> Dict[str, dict]:
        return self._tables.setdefault(collection, {})

    def insert(self, collection: str, values: dict) -> dict:
        self._check("insert", collection)
        row = copy.deepcopy(values)
        with self._lock:
            row_id = str(row.get("id") or uuid.uuid4())
            row["id"] = row_id
            row.setdefault("created_at", _now())
            self._table(collection)[row_id] = row
            self._seq[row_id] = next(self._counter)
        return copy.deepcopy(row)

    def update(self, collection: str, values: dict, filters: dict) -> int:
        self._check("update", collection)
        count = 0
        with self._lock:
            for row in self._table(collection).values():
                if _matches(row, filters):
                    row.update(copy.deepcopy(values))
                    row["updated_at"] = _now()
                    count += 1
        return count

    def delete(self, collection: str, filters: dict) -> int:
        self._check("delete", collection)
        with self._lock:
            table = self._table(collection)
            doomed = [row_id for row_id, row in table.items() if _matches(row, filters)]
            for row_id in doomed:
                del table[row_id]
                self._seq.pop(row_id, None)
        return len(doomed)

    def select(
        self,
        collection: str,
        filters: dict | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        self._check("select", collection)
        with self._lock:
            rows = [r for r in self._table(collection).values() if _matches(r, filters)]
            if order_by:
                rows.sort(key=lambda r: _sort_key(r, order_by, self._seq.get(r["id"], 0)), reverse=descending)
            if isinstance(limit, int) and limit >= 0:
                rows = rows[:limit]
            return [copy.deepcopy(r) for r in rows]

    def count(self, op: str, collection: str | None = None) -> int:
        return sum(1 for call_op, call_coll in self.calls if call_op == op and (collection is None or call_coll == collection))
