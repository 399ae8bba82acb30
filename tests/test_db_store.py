import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores_db import _decode_row, _is_safe_identifier, DbRowStore
from lifeos.errors import RowStoreError


class TestDbHelpers(unittest.TestCase):
    def test_identifiers(self) -> None:
        self.assertTrue(_is_safe_identifier("debt_payments"))
        self.assertFalse(_is_safe_identifier("tasks; drop table x"))
        self.assertFalse(_is_safe_identifier(""))

    def test_unsafe_collection_is_refused(self) -> None:
        with self.assertRaises(RowStoreError):
            DbRowStore().select("tasks where 1=1")

    def test_unfiltered_delete_is_refused(self) -> None:
        with self.assertRaises(RowStoreError):
            DbRowStore().delete("tasks", {})

    def test_decode_row(self) -> None:
        from datetime import datetime, timezone
        from decimal import Decimal

        row = _decode_row({"id": 7, "amount": Decimal("10.50"), "created_at": datetime(2024, 5, 2, 12, tzinfo=timezone.utc)})
        self.assertEqual(row, {"id": "7", "amount": 10.5, "created_at": "2024-05-02T12:00:00.000Z"})


@unittest.skipUnless(os.getenv("USE_DB") == "1" and os.getenv("SUPABASE_DB_URL"), "needs a live database")
class TestDbRowStore(unittest.TestCase):
    def test_insert_select_delete(self) -> None:
        store = DbRowStore()
        row = store.insert("tasks", {"title": "db smoke", "priority": 2})
        try:
            rows = store.select("tasks", {"id": row["id"]}, limit=1)
            self.assertEqual(rows[0]["title"], "db smoke")
        finally:
            store.delete("tasks", {"id": row["id"]})
        self.assertEqual(store.select("tasks", {"id": row["id"]}), [])


if __name__ == "__main__":
    unittest.main()
