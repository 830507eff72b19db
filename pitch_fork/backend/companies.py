import logging
from typing import Any, Dict, List, Optional, Tuple

from .constants import COMPANY_STATUSES
from .models import utc_now
from .storage import TABLE_COLUMNS, NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")

# Scores and recommendations are written by the Score-Card analysis only.
SYSTEM_MANAGED_COLUMNS = {
    "id", "status", "overall_score", "recommendation", "date_submitted", "created_at", "updated_at",
}
EDITABLE_COLUMNS = set(TABLE_COLUMNS["companies"]) - SYSTEM_MANAGED_COLUMNS


def recommendation_for_score(score: Optional[float]) -> Optional[str]:
    if score is None:
        return None
    if score >= 8:
        return "Invest"
    if score >= 5:
        return "Consider"
    return "Pass"


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(fields) - EDITABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown company fields: {', '.join(unknown)}")
    cleaned = {}
    for key, value in fields.items():
        cleaned[key] = value.strip() if isinstance(value, str) else value
    return cleaned


def get_company(record_store: RecordStore, company_id: str) -> dict:
    company = record_store.get("companies", company_id)
    if company is None:
        raise NotFoundError("Company not found.")
    return company


def find_company_by_name(record_store: RecordStore, name: str) -> Optional[dict]:
    return record_store.find_one("companies", iexact={"name": (name or "").strip()})


def create_company(record_store: RecordStore, fields: Dict[str, Any]) -> Tuple[dict, bool]:
    """Insert a company unless one with the same name exists; returns (company, created)."""
    cleaned = _clean_fields(fields)
    name = cleaned.get("name") or ""
    if not name:
        raise ValueError("Company name is required.")

    existing = find_company_by_name(record_store, name)
    if existing is not None:
        logger.info("company_id=%s company_exists name=%s", existing["id"], name)
        return existing, False

    cleaned["status"] = "Submitted"
    cleaned["date_submitted"] = utc_now()
    company = record_store.insert("companies", cleaned)
    logger.info("company_id=%s company_created name=%s", company["id"], name)
    return company, True


def list_companies(record_store: RecordStore, order: str = "name") -> List[dict]:
    if order == "name":
        return record_store.find("companies", order_by="name")
    if order == "date_submitted":
        return record_store.find("companies", order_by="date_submitted", descending=True)
    raise ValueError("order must be 'name' or 'date_submitted'.")


def update_company(record_store: RecordStore, company_id: str, fields: Dict[str, Any]) -> dict:
    cleaned = _clean_fields(fields)
    if "name" in cleaned and not cleaned["name"]:
        raise ValueError("Company name cannot be empty.")
    get_company(record_store, company_id)
    return record_store.update("companies", company_id, cleaned)


def set_status(record_store: RecordStore, company_id: str, status: str) -> dict:
    if status not in COMPANY_STATUSES:
        raise ValueError(f"Invalid company status: {status}. Expected one of: {', '.join(COMPANY_STATUSES)}.")
    get_company(record_store, company_id)
    company = record_store.update("companies", company_id, {"status": status})
    logger.info("company_id=%s status_changed status=%s", company_id, status)
    return company


def founder_companies(record_store: RecordStore, email: str) -> List[dict]:
    return record_store.find(
        "companies",
        iexact={"email_1": (email or "").strip()},
        order_by="date_submitted",
        descending=True,
    )
