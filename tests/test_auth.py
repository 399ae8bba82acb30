import os
import sys
import unittest
from unittest import mock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

import app.auth as auth
from app.auth import SupabaseAuthMiddleware, is_public_path


def _build_app() -> FastAPI:
    api = FastAPI()
    api.add_middleware(SupabaseAuthMiddleware, supabase_url="https://example.supabase.co/")

    @api.get("/health")
    async def health() -> dict:
        return {"ok": True}

    @api.get("/private")
    async def private(request: Request) -> dict:
        return {"ok": True, "user": getattr(request.state, "user", None)}

    return api


class TestAuthMiddleware(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch.dict(os.environ, {"LIFEOS_DISABLE_AUTH": ""})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(_build_app())

    def test_public_paths(self) -> None:
        self.assertTrue(is_public_path("/health"))
        self.assertFalse(is_public_path("/auth/callback"))
        self.assertFalse(is_public_path("/records/tasks"))
        self.assertEqual(self.client.get("/health").status_code, 200)

    def test_missing_token(self) -> None:
        res = self.client.get("/private")
        self.assertEqual(res.status_code, 401)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "AUTH_MISSING_TOKEN")

    def test_unauthorized_carries_local_cors(self) -> None:
        res = self.client.get("/private", headers={"Origin": "http://localhost:3000"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.headers.get("access-control-allow-origin"), "http://localhost:3000")
        self.assertEqual(res.headers.get("access-control-allow-credentials"), "true")

        res = self.client.get("/private", headers={"Origin": "https://evil.example"})
        self.assertIsNone(res.headers.get("access-control-allow-origin"))

    def test_invalid_token(self) -> None:
        res = self.client.get("/private", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_INVALID_TOKEN")

    def test_cookie_token_is_verified(self) -> None:
        claims = {"sub": "u1", "email": "ana@example.com", "role": "authenticated"}
        with mock.patch.object(auth, "verify_jwt", return_value=claims) as verify:
            res = self.client.get("/private", headers={"Cookie": "sb-access-token=tok"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["user"]["id"], "u1")
        args = verify.call_args[0]
        self.assertEqual(args[0], "tok")
        self.assertEqual(args[1], "https://example.supabase.co/auth/v1/.well-known/jwks.json")
        self.assertEqual(args[2], "https://example.supabase.co/auth/v1")

    def test_disabled_auth_passes_through(self) -> None:
        with mock.patch.dict(os.environ, {"LIFEOS_DISABLE_AUTH": "1"}):
            res = self.client.get("/private")
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.json()["user"])


if __name__ == "__main__":
    unittest.main()
