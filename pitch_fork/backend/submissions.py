import logging
from typing import Any, Dict, List

from . import companies, documents, messages
from .analysis_records import find_analysis
from .documents import IncomingFile
from .object_store import ObjectStore
from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")


def submit_company(
    record_store: RecordStore,
    object_store: ObjectStore,
    company_fields: Dict[str, Any],
    files: List[IncomingFile],
) -> dict:
    """Founder submission: company row (reused when the name exists), documents, welcome message."""
    name = (company_fields.get("name") or "").strip()
    email = (company_fields.get("email_1") or "").strip()
    if not name or not email:
        raise ValueError("Company name and primary contact email are required.")
    if not files:
        raise ValueError("Please upload at least one document.")

    company, created = companies.create_company(record_store, company_fields)
    try:
        uploaded = documents.upload_documents(record_store, object_store, company["id"], files)
    except Exception:
        if created:
            record_store.delete("companies", company["id"])
        raise

    welcome = messages.post_welcome_message(record_store, company["id"])
    logger.info(
        "company_id=%s founder_submission created=%s documents=%s",
        company["id"],
        created,
        len(uploaded),
    )
    if not created:
        # an existing company may belong to another founder
        company = {"id": company["id"], "name": company["name"]}
    return {"company": company, "created": created, "documents": uploaded, "message_id": welcome["id"]}


def select_investors(record_store: RecordStore, company_id: str, investor_user_ids: List[str]) -> int:
    unique_ids = list(dict.fromkeys(user_id for user_id in investor_user_ids if user_id))
    if not unique_ids:
        raise ValueError("Please select at least one investor.")
    companies.get_company(record_store, company_id)

    active = {
        investor["user_id"]
        for investor in record_store.find("investor_details", filters={"is_active": True})
    }
    unknown = [user_id for user_id in unique_ids if user_id not in active]
    if unknown:
        raise ValueError(f"Unknown or inactive investors: {', '.join(unknown)}")

    rows = [
        {"company_id": company_id, "investor_user_id": user_id, "status": "submitted", "history": ""}
        for user_id in unique_ids
        if find_analysis(record_store, company_id, user_id) is None
    ]
    if rows:
        record_store.insert_many("analysis", rows)
    logger.info("company_id=%s investors_selected requested=%s created=%s", company_id, len(unique_ids), len(rows))
    return len(rows)
