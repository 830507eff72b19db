import logging
from typing import List, Optional

from .constants import PREFERRED_LLM_OPTIONS
from .prompts.analysis import DEFAULT_PROMPTS
from .storage import NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")


def _validate_llm(preferred_llm: Optional[str]) -> Optional[str]:
    if preferred_llm in (None, ""):
        return None
    if preferred_llm not in PREFERRED_LLM_OPTIONS:
        raise ValueError(f"preferred_llm must be one of: {', '.join(PREFERRED_LLM_OPTIONS)}.")
    return preferred_llm


def list_prompts(record_store: RecordStore) -> List[dict]:
    return record_store.find("prompts", order_by="created_at", descending=True)


def get_prompt_by_name(record_store: RecordStore, prompt_name: str) -> Optional[dict]:
    return record_store.find_one("prompts", filters={"prompt_name": prompt_name}, order_by="created_at", descending=True)


def create_prompt(
    record_store: RecordStore,
    *,
    prompt_name: str,
    prompt_detail: str,
    preferred_llm: Optional[str] = None,
) -> dict:
    name = (prompt_name or "").strip()
    detail = (prompt_detail or "").strip()
    if not name or not detail:
        raise ValueError("Prompt name and prompt detail are required.")
    return record_store.insert(
        "prompts",
        {"prompt_name": name, "prompt_detail": detail, "preferred_llm": _validate_llm(preferred_llm)},
    )


def update_prompt(
    record_store: RecordStore,
    prompt_id: str,
    *,
    prompt_name: Optional[str] = None,
    prompt_detail: Optional[str] = None,
    preferred_llm: Optional[str] = None,
) -> dict:
    if record_store.get("prompts", prompt_id) is None:
        raise NotFoundError("Prompt not found.")
    changes = {}
    if prompt_name is not None:
        if not prompt_name.strip():
            raise ValueError("Prompt name cannot be empty.")
        changes["prompt_name"] = prompt_name.strip()
    if prompt_detail is not None:
        if not prompt_detail.strip():
            raise ValueError("Prompt detail cannot be empty.")
        changes["prompt_detail"] = prompt_detail.strip()
    if preferred_llm is not None:
        changes["preferred_llm"] = _validate_llm(preferred_llm)
    return record_store.update("prompts", prompt_id, changes)


def delete_prompt(record_store: RecordStore, prompt_id: str) -> None:
    if not record_store.delete("prompts", prompt_id):
        raise NotFoundError("Prompt not found.")


def seed_default_prompts(record_store: RecordStore) -> int:
    created = 0
    for prompt_name, prompt_detail in DEFAULT_PROMPTS.items():
        if get_prompt_by_name(record_store, prompt_name) is None:
            create_prompt(record_store, prompt_name=prompt_name, prompt_detail=prompt_detail, preferred_llm="GPT-4")
            created += 1
    if created:
        logger.info("prompts_seeded count=%s", created)
    return created
