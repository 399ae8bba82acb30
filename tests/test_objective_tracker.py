import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

import objective_tracker
from app.stores import MemoryRowStore
from crud_engine import CrudEngine
from lifeos.catalog import OBJECTIVES


class TestUpdateProgress(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryRowStore(record_calls=True)
        self.engine = CrudEngine(self.store)
        self.objective_id = self.engine.create(
            OBJECTIVES,
            {"area": "Salud", "title": "Correr 10k", "start_date": "2024-05-01", "end_date": "2024-05-31", "progress": "10", "status": "Plan"},
        )

    def _row(self) -> dict:
        return self.engine.get(OBJECTIVES, self.objective_id)

    def test_patches_only_progress_and_status(self) -> None:
        values = objective_tracker.update_progress(self.engine, self.objective_id, "40", "Pausado")
        self.assertEqual(values, {"progress": 40.0, "status": "Pausado"})
        row = self._row()
        self.assertEqual(row["progress"], 40.0)
        self.assertEqual(row["status"], "Pausado")
        self.assertEqual(row["area"], "Salud")
        self.assertEqual(row["title"], "Correr 10k")
        self.assertEqual(row["end_date"], "2024-05-31")

    def test_progress_is_clamped(self) -> None:
        objective_tracker.update_progress(self.engine, self.objective_id, "140")
        self.assertEqual(self._row()["progress"], 100.0)
        objective_tracker.update_progress(self.engine, self.objective_id, "-5")
        self.assertEqual(self._row()["progress"], 0.0)

    def test_blank_values_fall_back(self) -> None:
        values = objective_tracker.update_progress(self.engine, self.objective_id, "mucho", "  ")
        self.assertEqual(values, {"progress": 0.0, "status": objective_tracker.DEFAULT_STATUS})
        self.assertEqual(self._row()["status"], "En curso")

    def test_empty_id_makes_no_calls(self) -> None:
        self.store.calls.clear()
        self.assertEqual(objective_tracker.update_progress(self.engine, "  ", "50"), {})
        self.assertEqual(objective_tracker.update_progress(self.engine, None, "50"), {})
        self.assertEqual(self.store.calls, [])


if __name__ == "__main__":
    unittest.main()
