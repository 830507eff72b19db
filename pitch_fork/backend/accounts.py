import logging
from typing import Any, Dict, List, Optional

from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")

PROFILE_FIELDS = ("first_name", "last_name", "phone", "company_name")
PREFERENCE_FIELDS = ("name", "email", "firm_name", "focus_areas", "comment", "investment_criteria_doc")


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def get_profile(record_store: RecordStore, user: dict) -> dict:
    profile = record_store.find_one("user_profiles", filters={"user_id": user["id"]}) or {}
    return {
        "user_id": user["id"],
        "email": user["email"],
        "user_type": user["user_type"],
        **{field: profile.get(field) for field in PROFILE_FIELDS},
    }


def update_profile(record_store: RecordStore, user: dict, changes: Dict[str, Any]) -> dict:
    cleaned = {key: _strip(value) for key, value in changes.items() if key in PROFILE_FIELDS and value is not None}
    profile = record_store.find_one("user_profiles", filters={"user_id": user["id"]})
    if profile is None:
        record_store.insert("user_profiles", {"user_id": user["id"], "user_type": user["user_type"], **cleaned})
    elif cleaned:
        record_store.update("user_profiles", profile["id"], cleaned)

    refreshed = get_profile(record_store, user)
    display_name = " ".join(part for part in (refreshed["first_name"], refreshed["last_name"]) if part)
    if display_name:
        record_store.update("users", user["id"], {"name": display_name})

    details = record_store.find_one("investor_details", filters={"user_id": user["id"]})
    if details is not None and display_name:
        record_store.update("investor_details", details["id"], {"name": display_name, "email": user["email"]})
    return refreshed


def get_investor_preferences(record_store: RecordStore, user: dict) -> Optional[dict]:
    return record_store.find_one("investor_details", filters={"user_id": user["id"]})


def upsert_investor_preferences(record_store: RecordStore, user: dict, preferences: Dict[str, Any]) -> dict:
    cleaned = {key: _strip(value) for key, value in preferences.items() if key in PREFERENCE_FIELDS}
    existing = get_investor_preferences(record_store, user)
    if existing is None:
        cleaned.setdefault("email", user["email"])
        cleaned.setdefault("name", user.get("name"))
        details = record_store.insert("investor_details", {"user_id": user["id"], "is_active": True, **cleaned})
        logger.info("user_id=%s investor_preferences_created", user["id"])
        return details
    details = record_store.update("investor_details", existing["id"], cleaned)
    logger.info("user_id=%s investor_preferences_updated fields=%s", user["id"], sorted(cleaned))
    return details


def list_active_investors(record_store: RecordStore) -> List[dict]:
    investors = record_store.find("investor_details", filters={"is_active": True}, order_by="name")
    return [
        {
            "user_id": investor["user_id"],
            "name": investor.get("name"),
            "firm_name": investor.get("firm_name"),
            "focus_areas": investor.get("focus_areas"),
        }
        for investor in investors
    ]
