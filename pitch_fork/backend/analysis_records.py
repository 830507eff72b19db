import threading
from datetime import date
from typing import List, Optional

from .models import utc_now
from .storage import NotFoundError, RecordStore


# History is read-modify-write; screening and concurrent category runs both append to it.
analysis_update_lock = threading.Lock()


def append_history(history: Optional[str], label: str, today: Optional[date] = None) -> str:
    entry = f"{(today or utc_now().date()).isoformat()}: {label}"
    current = (history or "").strip()
    return f"{current}\n{entry}" if current else entry


def get_analysis(record_store: RecordStore, analysis_id: str) -> dict:
    analysis = record_store.get("analysis", analysis_id)
    if analysis is None:
        raise NotFoundError("Analysis not found.")
    return analysis


def find_analysis(record_store: RecordStore, company_id: str, investor_user_id: str) -> Optional[dict]:
    return record_store.find_one(
        "analysis",
        filters={"company_id": company_id, "investor_user_id": investor_user_id},
        order_by="created_at",
    )


def find_or_create_analysis(
    record_store: RecordStore,
    company_id: str,
    investor_user_id: str,
    status: str = "submitted",
) -> dict:
    existing = find_analysis(record_store, company_id, investor_user_id)
    if existing is not None:
        return existing
    return record_store.insert(
        "analysis",
        {"company_id": company_id, "investor_user_id": investor_user_id, "status": status, "history": ""},
    )


def resolve_analysis(
    record_store: RecordStore,
    company_id: str,
    investor_user_id: str,
    analysis_id: Optional[str] = None,
) -> dict:
    """The given analysis row, checked against the company, or the investor's row for it."""
    if not analysis_id:
        return find_or_create_analysis(record_store, company_id, investor_user_id)
    analysis = get_analysis(record_store, analysis_id)
    if analysis["company_id"] != company_id:
        raise ValueError("Analysis does not belong to this company.")
    if analysis["investor_user_id"] != investor_user_id:
        raise PermissionError("Analysis belongs to another investor.")
    return analysis


def investor_dashboard(record_store: RecordStore, investor_user_id: str) -> List[dict]:
    rows_by_company: dict = {}
    for analysis in record_store.find("analysis", filters={"investor_user_id": investor_user_id}):
        rows_by_company.setdefault(analysis["company_id"], []).append(
            {
                "id": analysis["id"],
                "status": analysis.get("status"),
                "overall_score": analysis.get("overall_score"),
                "recommendation": analysis.get("recommendation"),
                "recommendation_reason": analysis.get("recommendation_reason"),
                "comments": analysis.get("comments"),
                "history": analysis.get("history"),
            }
        )

    companies = []
    for company_id, analyses in rows_by_company.items():
        company = record_store.get("companies", company_id)
        if company is None:
            continue
        companies.append({**company, "analysis": analyses})

    companies.sort(key=lambda company: company.get("date_submitted") or utc_now(), reverse=True)
    return companies


def company_reports(record_store: RecordStore, company_id: str) -> List[dict]:
    return record_store.find(
        "analysis_reports",
        filters={"company_id": company_id},
        order_by="generated_at",
        descending=True,
    )
