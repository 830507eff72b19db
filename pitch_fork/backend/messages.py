import logging
from typing import List, Optional

from .storage import NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")

WELCOME_TITLE = "Welcome to Pitch Fork!"
WELCOME_DETAIL = (
    "Thank you for submitting your company information. We will notify you on the next steps. "
    "Please login to see the status and to address any questions that have been asked."
)


def post_message(
    record_store: RecordStore,
    *,
    company_id: Optional[str],
    title: str,
    detail: str,
    sender_type: str = "system",
    sender_id: Optional[str] = None,
    recipient_type: str = "founder",
    recipient_id: Optional[str] = None,
) -> dict:
    message = record_store.insert(
        "messages",
        {
            "company_id": company_id,
            "sender_type": sender_type,
            "sender_id": sender_id,
            "recipient_type": recipient_type,
            "recipient_id": recipient_id,
            "message_title": title,
            "message_detail": detail,
            "message_status": "unread",
        },
    )
    logger.info(
        "message_id=%s message_posted company_id=%s title=%s",
        message["id"],
        company_id,
        title,
    )
    return message


def post_welcome_message(record_store: RecordStore, company_id: str) -> dict:
    return post_message(record_store, company_id=company_id, title=WELCOME_TITLE, detail=WELCOME_DETAIL)


def post_analysis_complete(
    record_store: RecordStore,
    company_id: str,
    *,
    report_title: str,
    overall_score: Optional[float] = None,
    recommendation: Optional[str] = None,
) -> dict:
    detail = f"Your company analysis is complete ({report_title})."
    if overall_score is not None:
        detail += f" Overall score: {overall_score:g}/10."
    if recommendation:
        detail += f" Recommendation: {recommendation}"
    return post_message(record_store, company_id=company_id, title="Analysis Complete", detail=detail.strip())


def company_messages(record_store: RecordStore, company_id: str) -> List[dict]:
    return record_store.find("messages", filters={"company_id": company_id}, order_by="date_sent", descending=True)


def mark_read(record_store: RecordStore, message_id: str) -> dict:
    if record_store.get("messages", message_id) is None:
        raise NotFoundError("Message not found.")
    return record_store.update("messages", message_id, {"message_status": "read"})
