from __future__ import annotations

from typing import Any

from crud_engine import CrudEngine
from lifeos.catalog import PROFILES


ADMIN_ROLE = "admin"


def get_profile(engine: CrudEngine, user_id: str) -> dict | None:
    if not user_id:
        return None
    return engine.get(PROFILES, user_id)


def list_profiles(engine: CrudEngine) -> list[dict]:
    return engine.select_where(PROFILES, {}, order_by="created_at", descending=False)


def ensure_profile(engine: CrudEngine, user: dict) -> dict:
    """Return the caller's profile, creating a pending one on first sight."""
    user_id = str(user.get("id") or "")
    profile = get_profile(engine, user_id)
    if profile is not None:
        return profile
    values = {
        "id": user_id,
        "email": user.get("email"),
        "full_name": ((user.get("claims") or {}).get("user_metadata") or {}).get("full_name"),
        "role": "user",
        "approved": False,
    }
    engine.insert_values(PROFILES, values)
    return get_profile(engine, user_id) or values


def is_approved(profile: dict | None) -> bool:
    return bool(profile and profile.get("approved"))


def is_admin(profile: dict | None) -> bool:
    return bool(profile and profile.get("role") == ADMIN_ROLE)


def approve_user(engine: CrudEngine, user_id: Any) -> None:
    engine.patch(PROFILES, user_id, {"approved": True})


def make_admin(engine: CrudEngine, user_id: Any) -> None:
    engine.patch(PROFILES, user_id, {"role": ADMIN_ROLE, "approved": True})
