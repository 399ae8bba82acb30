import os
import sys
import unittest
from types import SimpleNamespace
from unittest import mock

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["LIFEOS_DISABLE_AUTH"] = "1"
os.environ["SUPABASE_URL"] = "http://localhost"

import app.main as main
from app.profiles import approve_user
from app.stores import MemoryRowStore
import lifeos.fields as fields
from lifeos.catalog import DEBTS, OBJECTIVES


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryRowStore(record_calls=True)
        main.engine.store = self.store
        self.client = TestClient(main.app)


class TestRecordsApi(ApiTestCase):
    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_schemas(self) -> None:
        body = self.client.get("/schemas").json()
        self.assertTrue(body["ok"])
        entities = [s["entity"] for s in body["schemas"]]
        self.assertIn("poa", entities)
        res = self.client.get("/schemas/tasks")
        self.assertEqual(res.json()["schema"]["storage_name"], "tasks")

    def test_create_then_list(self) -> None:
        res = self.client.post("/records/tasks", json={"title": "Informe", "priority": 3, "status": "Hoy"})
        self.assertEqual(res.status_code, 201, res.text)
        body = res.json()
        self.assertTrue(body["record_id"])
        self.assertIn("/tasks", body["refresh"])
        self.assertIn("/admin?t=tasks", body["refresh"])

        body = self.client.get("/records/tasks").json()
        self.assertTrue(body["ok"])
        self.assertEqual(len(body["records"]), 1)
        self.assertEqual(body["records"][0]["priority"], 3.0)
        self.assertEqual(body["display"][0]["priority"], "3")
        self.assertEqual(body["display"][0]["description"], "-")

    def test_form_body(self) -> None:
        res = self.client.post("/records/transactions", data={"kind": "Egreso", "amount": "12.5", "tags": "casa, comida"})
        self.assertEqual(res.status_code, 201, res.text)
        record_id = res.json()["record_id"]
        record = self.client.get(f"/records/transactions/{record_id}").json()["record"]
        self.assertEqual(record["amount"], 12.5)
        self.assertEqual(record["tags"], ["casa", "comida"])

    def test_update_and_delete(self) -> None:
        record_id = self.client.post("/records/contacts", json={"name": "Ana"}).json()["record_id"]
        res = self.client.put(f"/records/contacts/{record_id}", json={"name": "Ana María", "company": "ACME"})
        self.assertTrue(res.json()["ok"])
        record = self.client.get(f"/records/contacts/{record_id}").json()["record"]
        self.assertEqual(record["company"], "ACME")
        self.client.delete(f"/records/contacts/{record_id}")
        self.assertEqual(self.client.get(f"/records/contacts/{record_id}").status_code, 404)

    def test_validation_error(self) -> None:
        res = self.client.post("/records/tasks", json={"priority": "2"})
        self.assertEqual(res.status_code, 400)
        error = res.json()["errors"][0]
        self.assertEqual(error["code"], "VALIDATION_FAILED")
        self.assertEqual(error["path"], "title")

    def test_unknown_entity(self) -> None:
        res = self.client.get("/records/invoices")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "ENTITY_NOT_FOUND")

    def test_missing_record(self) -> None:
        res = self.client.get("/records/tasks/nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "NOT_FOUND")

    def test_failed_list_degrades(self) -> None:
        self.store.fail_on.add(("select", "tasks"))
        res = self.client.get("/records/tasks")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["records"], [])
        self.assertEqual(body["errors"][0]["code"], "READ_FAILED")

    def test_persist_error_message(self) -> None:
        self.store.fail_on.add(("insert", "tasks"))
        res = self.client.post("/records/tasks", json={"title": "x"})
        self.assertEqual(res.status_code, 400)
        error = res.json()["errors"][0]
        self.assertEqual(error["code"], "PERSIST_FAILED")
        self.assertEqual(error["message"], "tasks: insert on tasks failed")


    def test_datetime_past_year_9999_is_stored_absent(self) -> None:
        with mock.patch.object(fields, "_TIMEZONE_NAME", "America/Santo_Domingo"):
            res = self.client.post("/records/events", json={"title": "x", "start": "9999-12-31T23:00"})
            self.assertEqual(res.status_code, 201, res.text)
            record = self.client.get(f"/records/events/{res.json()['record_id']}").json()["record"]
        self.assertIsNone(record["start"])
        self.assertEqual(record["title"], "x")


class TestHomeApi(ApiTestCase):
    def test_overview(self) -> None:
        self.client.post("/records/tasks", json={"title": "Informe"})
        self.client.post("/records/contacts", json={"name": "Ana"})
        body = self.client.get("/overview").json()
        self.assertTrue(body["ok"])
        overview = body["overview"]
        self.assertEqual(overview["tasks_today"], 1)
        self.assertEqual([c["name"] for c in overview["contacts"]], ["Ana"])
        self.assertEqual(overview["events"], [])

    def test_objective_progress(self) -> None:
        objective_id = main.engine.create(OBJECTIVES, {"area": "Salud", "title": "Correr", "progress": "10", "status": "Plan"})
        res = self.client.post(f"/objectives/{objective_id}/progress", data={"progress": "40", "status": "En curso"})
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual(body["patch"], {"progress": 40.0, "status": "En curso"})
        self.assertIn("/objectives", body["refresh"])
        row = main.engine.get(OBJECTIVES, objective_id)
        self.assertEqual(row["area"], "Salud")
        self.assertEqual(row["progress"], 40.0)

        body = self.client.post(f"/objectives/{objective_id}/progress", json={"progress": "140"}).json()
        self.assertEqual(body["patch"]["progress"], 100.0)

class TestDebtsApi(ApiTestCase):
    def test_payment_flow(self) -> None:
        res = self.client.post("/debts", data={"concept": "Carro", "creditor": "Banco", "amount": "100"})
        self.assertEqual(res.status_code, 201, res.text)
        debt_id = res.json()["record_id"]

        body = self.client.post(f"/debts/{debt_id}/payments", data={"amount": "60", "paid_at": "2024-05-02"}).json()
        self.assertEqual(body["status"], "Abierta")
        body = self.client.post(f"/debts/{debt_id}/payments", data={"amount": "40"}).json()
        self.assertEqual(body["status"], "Cerrada")
        self.assertIn("/debts", body["refresh"])

        overview = self.client.get("/debts/overview").json()["overview"]
        self.assertEqual(overview["total_paid"], 100.0)
        self.assertEqual(overview["total_remaining"], 0.0)

        payment_id = body["record_id"]
        body = self.client.delete(f"/debts/{debt_id}/payments/{payment_id}").json()
        self.assertEqual(body["status"], "Abierta")

        body = self.client.post(f"/debts/{debt_id}/amount", data={"amount": "60"}).json()
        self.assertEqual(body["status"], "Cerrada")

    def test_invalid_debt_is_skipped(self) -> None:
        body = self.client.post("/debts", data={"concept": "Carro", "amount": "100"}).json()
        self.assertTrue(body["skipped"])

    def test_bad_status(self) -> None:
        debt_id = self.client.post("/debts", json={"concept": "a", "creditor": "b", "amount": 5}).json()["record_id"]
        res = self.client.post(f"/debts/{debt_id}/status", json={"status": "Perdonada"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "status")

    def test_delete_debt_cascades(self) -> None:
        debt_id = self.client.post("/debts", json={"concept": "a", "creditor": "b", "amount": 5}).json()["record_id"]
        self.client.post(f"/debts/{debt_id}/payments", json={"amount": 1})
        self.client.delete(f"/debts/{debt_id}")
        self.assertIsNone(main.engine.get(DEBTS, debt_id))
        self.assertEqual(self.client.get("/records/debt_payments").json()["records"], [])


class TestPoaApi(ApiTestCase):
    def test_create_and_quick_update(self) -> None:
        form = {
            "year": "2024",
            "area": "Salud",
            "objective": "Correr",
            "activity": "Entrenar",
            "indicator": "km",
            "target": "500",
            "budget": "200",
            "months": ["1", "2"],
        }
        res = self.client.post("/poa", data=form)
        self.assertEqual(res.status_code, 201, res.text)
        item_id = res.json()["record_id"]

        body = self.client.post(f"/poa/{item_id}/quick-update", data={"progress": "150", "spend_delta": "50"}).json()
        self.assertTrue(body["updated"])
        self.assertEqual(body["patch"]["progress"], 100.0)
        self.assertTrue(body["audited"])

        overview = self.client.get("/poa/overview?year=2024").json()["overview"]
        self.assertEqual(len(overview["items"]), 1)
        self.assertEqual(overview["items"][0]["planned_months"], [1, 2])
        self.assertEqual(overview["execution_pct"], 25.0)


class TestFinanceApi(ApiTestCase):
    def test_overview(self) -> None:
        self.client.post("/records/accounts", json={"name": "Caja", "starting_bal": "100"})
        body = self.client.get("/finance/overview?budget=500").json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["overview"]["starting_balance"], 100.0)
        self.assertEqual(body["overview"]["budget"]["monthly"], 500.0)


class TestAccess(ApiTestCase):
    def test_pending_user_is_blocked_until_approved(self) -> None:
        request = SimpleNamespace(state=SimpleNamespace(user={"id": "u1", "email": "ana@example.com", "claims": {}}))
        actor = main._resolve_actor(request)
        self.assertIsInstance(actor, JSONResponse)
        self.assertEqual(actor.status_code, 403)

        approve_user(main.engine, "u1")
        actor = main._resolve_actor(request)
        self.assertEqual(actor["user_id"], "u1")
        self.assertEqual(actor["role"], "user")

        denied = main._require_admin(request)
        self.assertEqual(denied.status_code, 403)

    def test_admin_user_routes(self) -> None:
        main.engine.insert_values(main.PROFILES, {"id": "u2", "email": "b@example.com", "role": "user", "approved": False})
        users = self.client.get("/admin/users").json()["users"]
        self.assertEqual([u["id"] for u in users], ["u2"])
        self.assertTrue(self.client.post("/admin/users/u2/approve").json()["ok"])
        self.assertTrue(self.client.post("/admin/users/u2/make-admin").json()["ok"])
        profile = main.engine.get(main.PROFILES, "u2")
        self.assertEqual(profile["role"], "admin")
        self.assertTrue(profile["approved"])
        self.assertEqual(self.client.post("/admin/users/ghost/approve").status_code, 404)


if __name__ == "__main__":
    unittest.main()
