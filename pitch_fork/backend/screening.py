import logging
from typing import Any, Dict, Optional

from . import llm_client
from .analysis_records import analysis_update_lock, append_history, resolve_analysis
from .companies import get_company
from .documents import latest_document, load_document_text
from .object_store import ObjectStore
from .prompts.screening import (
    DECK_ATTACHED_NOTE,
    NO_DECK_NOTE,
    SCREENING_VERSION,
    SYSTEM_PROMPT,
    USER_PROMPT_TEMPLATE,
)
from .storage import NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")

DEFAULT_CRITERIA = "No specific criteria provided"
MAX_DECK_CHARS = 30000
RECOMMENDATION_BY_DECISION = {"Accept": "Analyze", "Reject": "Reject"}


def _value(company: dict, field: str) -> str:
    value = company.get(field)
    return str(value).strip() if value not in (None, "") else "N/A"


def build_company_summary(company: dict) -> str:
    return "\n".join(
        [
            f"Company Name: {_value(company, 'name')}",
            f"Industry: {_value(company, 'industry')}",
            f"Description: {_value(company, 'description')}",
            f"Funding Stage: {_value(company, 'funding_stage')}",
            f"Revenue: {_value(company, 'revenue')}",
            f"Valuation: {_value(company, 'valuation')}",
            f"Location: {_value(company, 'address')}, {_value(company, 'country')}",
            f"Website: {_value(company, 'url')}",
            f"Contact: {_value(company, 'contact_name_1')} ({_value(company, 'email_1')})",
        ]
    )


def build_screening_prompt(criteria: str, company: dict, deck_text: Optional[str]) -> str:
    if deck_text:
        deck_section = DECK_ATTACHED_NOTE.replace("{DECK_TEXT}", deck_text[:MAX_DECK_CHARS])
    else:
        deck_section = NO_DECK_NOTE
    return (
        USER_PROMPT_TEMPLATE.replace("{INVESTMENT_CRITERIA}", criteria)
        .replace("{COMPANY_SUMMARY}", build_company_summary(company))
        .replace("{DECK_SECTION}", deck_section)
    )


def validate_screening_result(payload: Any) -> Dict[str, str]:
    if not isinstance(payload, dict):
        raise ValueError("Screening JSON root must be an object.")
    decision = str(payload.get("recommendation") or "").strip().capitalize()
    if decision not in RECOMMENDATION_BY_DECISION:
        raise ValueError('recommendation must be "Accept" or "Reject".')
    reason = str(payload.get("reason") or "").strip()
    if not reason:
        raise ValueError("reason must be a non-empty string.")
    return {"recommendation": decision, "reason": reason}


def _load_deck_text(record_store: RecordStore, object_store: ObjectStore, company_id: str) -> Optional[str]:
    document = latest_document(record_store, company_id)
    if document is None:
        logger.info("company_id=%s screening_without_deck reason=no_documents", company_id)
        return None
    try:
        extracted = load_document_text(object_store, document)
    except Exception as exc:
        logger.warning(
            "company_id=%s screening_without_deck reason=download_failed path=%s error=%s",
            company_id,
            document["path"],
            exc,
        )
        return None
    if extracted is None or not extracted.text.strip():
        logger.info("company_id=%s screening_without_deck reason=no_text path=%s", company_id, document["path"])
        return None
    return extracted.text


def request_screening(prompt: str) -> Dict[str, str]:
    raw_output = llm_client.request_chat_completion(
        system_prompt=SYSTEM_PROMPT,
        user_prompt=prompt,
        temperature=0.2,
        max_tokens=600,
        response_format={"type": "json_object"},
    )
    try:
        return validate_screening_result(llm_client.parse_json_object(raw_output))
    except ValueError:
        repaired_output = llm_client.request_chat_completion(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=llm_client.build_repair_prompt(raw_output),
            temperature=0.2,
            max_tokens=600,
        )
        try:
            return validate_screening_result(llm_client.parse_json_object(repaired_output))
        except ValueError as exc:
            raise RuntimeError(f"Screening response was not valid JSON: {exc}") from exc


def screen_company(
    record_store: RecordStore,
    object_store: ObjectStore,
    *,
    company_id: str,
    investor_user_id: str,
    analysis_id: Optional[str] = None,
) -> dict:
    investor = record_store.find_one("investor_details", filters={"user_id": investor_user_id})
    if investor is None:
        raise NotFoundError("Investor details not found. Save your investment preferences first.")
    criteria = (investor.get("investment_criteria_doc") or "").strip() or DEFAULT_CRITERIA

    company = get_company(record_store, company_id)
    analysis = resolve_analysis(record_store, company_id, investor_user_id, analysis_id)

    deck_text = _load_deck_text(record_store, object_store, company_id)
    prompt = build_screening_prompt(criteria, company, deck_text)
    logger.info(
        "analysis_id=%s screening_started version=%s company_id=%s has_deck=%s prompt_chars=%s",
        analysis["id"],
        SCREENING_VERSION,
        company_id,
        bool(deck_text),
        len(prompt),
    )

    result = request_screening(prompt)
    with analysis_update_lock:
        current = record_store.get("analysis", analysis["id"]) or analysis
        updated = record_store.update(
            "analysis",
            analysis["id"],
            {
                "status": "screened",
                "recommendation": RECOMMENDATION_BY_DECISION[result["recommendation"]],
                "recommendation_reason": result["reason"],
                "history": append_history(current.get("history"), "Screened"),
            },
        )
    logger.info(
        "analysis_id=%s screening_done decision=%s recommendation=%s",
        analysis["id"],
        result["recommendation"],
        updated["recommendation"],
    )
    return {
        "analysis_id": analysis["id"],
        "recommendation": result["recommendation"],
        "reason": result["reason"],
        "status": updated["status"],
    }
