import logging
from typing import Any, Dict, Iterable

from . import llm_client
from .deck_extractor import detect_extension, extract_document_text, readable_length
from .documents import get_document, load_document_text
from .object_store import ObjectStore
from .prompts.extraction import (
    COMPANY_SPEC_FIELDS,
    KEY_INFO_FIELDS,
    KEY_INFO_SYSTEM_PROMPT,
    KEY_INFO_USER_PROMPT_TEMPLATE,
    SYSTEM_PROMPT,
    USER_PROMPT_TEMPLATE,
)
from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")

MIN_READABLE_CHARS = 100
MAX_PROMPT_TEXT_CHARS = 60000
SPEC_EXTENSIONS = {".pdf", ".pptx"}


def coerce_fields(payload: Dict[str, Any], fields: Iterable[str]) -> Dict[str, str]:
    """Every expected field as a stripped string; missing or null becomes ""."""
    result = {}
    for field in fields:
        value = payload.get(field)
        if value is None:
            result[field] = ""
        elif isinstance(value, list):
            result[field] = "; ".join(str(item).strip() for item in value if str(item).strip())
        else:
            result[field] = str(value).strip()
    return result


def _request_json(system_prompt: str, user_prompt: str) -> Dict[str, Any]:
    raw_output = llm_client.request_chat_completion(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        temperature=0.1,
        max_tokens=2048,
    )
    try:
        return llm_client.parse_json_object(raw_output)
    except ValueError:
        repaired_output = llm_client.request_chat_completion(
            system_prompt=system_prompt,
            user_prompt=llm_client.build_repair_prompt(raw_output),
            temperature=0.1,
            max_tokens=2048,
        )
        try:
            return llm_client.parse_json_object(repaired_output)
        except ValueError as exc:
            raise RuntimeError(f"Extraction response was not valid JSON: {exc}") from exc


def extract_company_specs(filename: str, data: bytes) -> Dict[str, str]:
    if detect_extension(filename) not in SPEC_EXTENSIONS:
        raise ValueError("Please upload the pitch deck as a PDF or PPTX file.")
    if not data:
        raise ValueError("Pitch deck file is empty.")

    extracted = extract_document_text(filename, data)
    if readable_length(extracted) < MIN_READABLE_CHARS:
        raise ValueError(
            "Could not extract readable text from the pitch deck. "
            "It may be scanned images; please upload a text-based PDF."
        )

    user_prompt = USER_PROMPT_TEMPLATE.replace("{DECK_TEXT}", extracted.text[:MAX_PROMPT_TEXT_CHARS])
    specs = coerce_fields(_request_json(SYSTEM_PROMPT, user_prompt), COMPANY_SPEC_FIELDS)
    logger.info(
        "pitch_deck_specs_extracted filename=%s pages=%s filled=%s",
        filename,
        extracted.num_pages_or_slides,
        sum(1 for value in specs.values() if value),
    )
    return specs


def extract_key_info(record_store: RecordStore, object_store: ObjectStore, document_id: str) -> Dict[str, str]:
    document = get_document(record_store, document_id)
    extracted = load_document_text(object_store, document)
    if extracted is None or not extracted.text.strip():
        raise ValueError("No readable text found in this document.")

    user_prompt = KEY_INFO_USER_PROMPT_TEMPLATE.replace("{DOCUMENT_TEXT}", extracted.text[:MAX_PROMPT_TEXT_CHARS])
    info = coerce_fields(_request_json(KEY_INFO_SYSTEM_PROMPT, user_prompt), KEY_INFO_FIELDS)

    record_store.insert(
        "extracted_data",
        {"file_path": document["path"], "extracted_info": {"kind": "key_info", **info}},
    )
    logger.info("document_id=%s key_info_extracted company_name=%s", document_id, info["company_name"])
    return info
