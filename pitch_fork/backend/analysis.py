import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from . import llm_client
from .analysis_records import analysis_update_lock, append_history, resolve_analysis
from .companies import get_company, recommendation_for_score
from .constants import DOCUMENTS_BUCKET, REPORT_URL_TTL_SECONDS, REPORTS_BUCKET
from .deck_extractor import extract_document_text
from .documents import remove_objects
from .messages import post_analysis_complete
from .models import utc_now
from .object_store import ObjectStore
from .prompt_library import get_prompt_by_name
from .prompts.analysis import ANALYSIS_CONFIG, ANALYSIS_VERSION, CATEGORY_TYPES, COMPOSITE_TYPES, FORMAT_RULES
from .report_pdf import render_report_pdf
from .storage import NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")

DEFAULT_MAX_SOURCE_CHARS = 40000
OVERALL_SCORE_PATTERN = re.compile(r"overall\s+score\s*[:=]?\s*(\d+(?:\.\d+)?)\s*/\s*10", re.IGNORECASE)

_active_jobs_lock = threading.Lock()
_active_jobs: Dict[str, str] = {}


@dataclass
class AnalysisPlan:
    analysis_type: str
    company: dict
    analysis: dict
    prompt_text: str
    documents: List[dict] = field(default_factory=list)
    reports: List[dict] = field(default_factory=list)

    @property
    def config(self) -> dict:
        return ANALYSIS_CONFIG[self.analysis_type]


def _max_source_chars() -> int:
    return int(os.getenv("MAX_SOURCE_CHARS", str(DEFAULT_MAX_SOURCE_CHARS)))


def report_file_type(analysis_type: str) -> str:
    if analysis_type in CATEGORY_TYPES:
        return f"{analysis_type}-analysis"
    return analysis_type


def company_slug(company_name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (company_name or "").lower()).strip("-")
    return slug or "company"


def parse_overall_score(text: str) -> Optional[float]:
    matches = OVERALL_SCORE_PATTERN.findall(text or "")
    if not matches:
        return None
    score = float(matches[-1])
    return score if 0 <= score <= 10 else None


def _latest_category_reports(record_store: RecordStore, company_id: str) -> List[dict]:
    category_file_types = [report_file_type(analysis_type) for analysis_type in CATEGORY_TYPES]
    latest: Dict[str, dict] = {}
    rows = record_store.find(
        "analysis_reports",
        filters={"company_id": company_id},
        order_by="generated_at",
        descending=True,
    )
    for report in rows:
        if report["report_type"] in category_file_types:
            latest.setdefault(report["report_type"], report)
    return [latest[file_type] for file_type in category_file_types if file_type in latest]


def _select_documents(record_store: RecordStore, company_id: str, document_ids: Optional[List[str]]) -> List[dict]:
    documents = record_store.find(
        "documents",
        filters={"company_id": company_id},
        order_by="date_added",
        descending=True,
    )
    if not document_ids:
        return documents
    by_id = {document["id"]: document for document in documents}
    missing = [document_id for document_id in document_ids if document_id not in by_id]
    if missing:
        raise ValueError(f"Documents not found for this company: {', '.join(missing)}")
    return [by_id[document_id] for document_id in document_ids]


def prepare_analysis(
    record_store: RecordStore,
    *,
    company_id: str,
    analysis_type: str,
    investor_user_id: str,
    analysis_id: Optional[str] = None,
    prompt: Optional[str] = None,
    document_ids: Optional[List[str]] = None,
) -> AnalysisPlan:
    """Validate an analysis request and gather its inputs without calling the LLM."""
    if not company_id:
        raise ValueError("company_id is required")
    if analysis_type not in ANALYSIS_CONFIG:
        raise ValueError(
            "Valid analysis_type is required (" + ", ".join(ANALYSIS_CONFIG) + ")."
        )

    company = get_company(record_store, company_id)
    analysis = resolve_analysis(record_store, company_id, investor_user_id, analysis_id)
    config = ANALYSIS_CONFIG[analysis_type]

    prompt_text = (prompt or "").strip()
    if not prompt_text:
        stored = get_prompt_by_name(record_store, config["prompt_name"])
        if stored is None:
            raise NotFoundError(
                f"{config['prompt_name']} prompt not found. Please ensure the prompt exists in the prompts table."
            )
        prompt_text = stored["prompt_detail"]

    reports: List[dict] = []
    if analysis_type in COMPOSITE_TYPES:
        reports = _latest_category_reports(record_store, company_id)

    documents = _select_documents(record_store, company_id, document_ids)
    if not documents and not reports:
        raise ValueError("No documents provided for analysis")

    return AnalysisPlan(
        analysis_type=analysis_type,
        company=company,
        analysis=analysis,
        prompt_text=prompt_text,
        documents=documents,
        reports=reports,
    )


def _report_text(record_store: RecordStore, object_store: ObjectStore, report: dict) -> Optional[str]:
    stored = record_store.find_one(
        "extracted_data",
        filters={"file_path": report["file_path"]},
        order_by="created_at",
        descending=True,
    )
    info = stored.get("extracted_info") if stored else None
    if isinstance(info, dict) and info.get("analysis_result"):
        return str(info["analysis_result"])
    extracted = extract_document_text(report["file_name"], object_store.download_bytes(REPORTS_BUCKET, report["file_path"]))
    return extracted.text if extracted is not None else None


def load_sources(record_store: RecordStore, object_store: ObjectStore, plan: AnalysisPlan) -> List[Tuple[str, str]]:
    """(label, text) pairs; composite types read earlier reports when there are any."""
    limit = _max_source_chars()
    sources: List[Tuple[str, str]] = []

    if plan.reports:
        for report in plan.reports:
            text = _report_text(record_store, object_store, report)
            if text and text.strip():
                sources.append((f"REPORT {report['report_type']}", text.strip()[:limit]))
        if sources:
            return sources
        logger.warning(
            "analysis_id=%s reports_unreadable type=%s falling_back=documents",
            plan.analysis["id"],
            plan.analysis_type,
        )

    for document in plan.documents:
        try:
            extracted = extract_document_text(
                document["filename"],
                object_store.download_bytes(DOCUMENTS_BUCKET, document["path"]),
            )
        except ValueError as exc:
            logger.warning("analysis_id=%s document_skipped path=%s error=%s", plan.analysis["id"], document["path"], exc)
            continue
        if extracted is None or not extracted.text.strip():
            logger.info("analysis_id=%s document_skipped path=%s reason=no_text", plan.analysis["id"], document["path"])
            continue
        label = document.get("document_name") or document["filename"]
        sources.append((f"DOCUMENT {label}", extracted.text[:limit]))

    if not sources:
        raise ValueError("None of the selected documents contain readable text.")
    return sources


def build_user_prompt(plan: AnalysisPlan, sources: List[Tuple[str, str]]) -> str:
    company = plan.company
    sections = [
        plan.prompt_text,
        "",
        f"Company: {company['name']}",
        f"Industry: {company.get('industry') or 'N/A'}",
        f"Funding stage: {company.get('funding_stage') or 'N/A'}",
        "",
        "SOURCE MATERIAL:",
    ]
    for label, text in sources:
        sections.append(f"=== {label} ===\n<<<{text}>>>")
    return "\n".join(sections)


def _record_completion(
    record_store: RecordStore,
    plan: AnalysisPlan,
    overall_score: Optional[float],
    finalize: bool = True,
) -> None:
    analysis_id = plan.analysis["id"]
    with analysis_update_lock:
        current = record_store.get("analysis", analysis_id) or plan.analysis
        history = append_history(current.get("history"), plan.config["history_label"])
        if not finalize:
            record_store.update("analysis", analysis_id, {"history": history})
            return
        analysis_changes = {"status": "analyzed", "analyzed_at": utc_now(), "history": history}
        company_changes = {"status": "Analyzed"}
        if overall_score is not None:
            recommendation = recommendation_for_score(overall_score)
            analysis_changes.update({"overall_score": overall_score, "recommendation": recommendation})
            company_changes.update({"overall_score": overall_score, "recommendation": recommendation})
        record_store.update("analysis", analysis_id, analysis_changes)
    record_store.update("companies", plan.company["id"], company_changes)


def mark_analysis_failed(record_store: RecordStore, analysis_id: str) -> None:
    try:
        with analysis_update_lock:
            record_store.update("analysis", analysis_id, {"status": "failed"})
    except Exception:
        logger.warning("analysis_id=%s mark_failed_error", analysis_id, exc_info=True)


def execute_analysis(
    record_store: RecordStore,
    object_store: ObjectStore,
    plan: AnalysisPlan,
    *,
    investor_user_id: str,
    progress: Optional[Callable[[int], None]] = None,
    notify: bool = True,
    finalize: bool = True,
) -> dict:
    """Generate one report. With finalize=False the analysis and company status are left to the caller."""
    report = progress or (lambda value: None)
    analysis_id = plan.analysis["id"]
    company = plan.company
    config = plan.config

    with analysis_update_lock:
        record_store.update("analysis", analysis_id, {"status": "in_progress"})

    try:
        sources = load_sources(record_store, object_store, plan)
        report(30)

        analysis_text = llm_client.request_chat_completion(
            system_prompt=f"{config['instructions']}\n\n{FORMAT_RULES}",
            user_prompt=build_user_prompt(plan, sources),
            temperature=0.3,
            max_tokens=4000,
        )
        model = llm_client.model_name()
        report(70)

        generated_at = utc_now()
        pdf_bytes = render_report_pdf(
            title=config["report_title"],
            company_name=company["name"],
            body=analysis_text,
            model=model,
            generated_at=generated_at,
        )
        file_type = report_file_type(plan.analysis_type)
        file_name = f"{company_slug(company['name'])}_{file_type}_{generated_at:%Y-%m-%dT%H-%M-%S}.pdf"
        file_path = f"{company['id']}/{file_name}"

        object_store.upload_bytes(REPORTS_BUCKET, file_path, pdf_bytes, "application/pdf", upsert=False)
        if not object_store.exists(REPORTS_BUCKET, file_path):
            raise RuntimeError(f"Uploaded report could not be verified in storage: {file_path}")
        try:
            report_row = record_store.insert(
                "analysis_reports",
                {
                    "analysis_id": analysis_id,
                    "company_id": company["id"],
                    "report_type": file_type,
                    "file_name": file_name,
                    "file_path": file_path,
                    "generated_by": investor_user_id,
                },
            )
        except Exception:
            remove_objects(object_store, REPORTS_BUCKET, [file_path])
            raise
        report(85)

        overall_score = parse_overall_score(analysis_text) if plan.analysis_type == "scorecard" else None
        _record_completion(record_store, plan, overall_score, finalize=finalize)

        record_store.insert(
            "extracted_data",
            {
                "file_path": file_path,
                "extracted_info": {
                    "analysis_type": plan.analysis_type,
                    "analysis_result": analysis_text,
                    "prompt_used": plan.prompt_text,
                    "model_used": model,
                    "company_id": company["id"],
                    "analysis_id": analysis_id,
                    "report_id": report_row["id"],
                    "documents_analyzed": ", ".join(label for label, _ in sources),
                },
            },
        )
        if notify:
            post_analysis_complete(
                record_store,
                company["id"],
                report_title=config["report_title"],
                overall_score=overall_score,
                recommendation=recommendation_for_score(overall_score),
            )
    except Exception:
        mark_analysis_failed(record_store, analysis_id)
        raise

    logger.info(
        "analysis_id=%s analysis_done version=%s type=%s report=%s chars=%s",
        analysis_id,
        ANALYSIS_VERSION,
        plan.analysis_type,
        file_path,
        len(analysis_text),
    )
    return {
        "analysis": analysis_text,
        "analysis_id": analysis_id,
        "analysis_type": plan.analysis_type,
        "report": {
            "id": report_row["id"],
            "file_name": file_name,
            "file_path": file_path,
            "download_url": object_store.create_signed_url(REPORTS_BUCKET, file_path, REPORT_URL_TTL_SECONDS),
        },
        "company": company["name"],
        "model_used": model,
        "overall_score": overall_score,
    }


def create_job(
    record_store: RecordStore,
    *,
    kind: str,
    company_id: str,
    analysis_id: str,
    analysis_type: Optional[str],
    requested_by: str,
) -> dict:
    return record_store.insert(
        "analysis_jobs",
        {
            "kind": kind,
            "company_id": company_id,
            "analysis_id": analysis_id,
            "analysis_type": analysis_type,
            "requested_by": requested_by,
            "status": "queued",
            "progress": 0,
        },
    )


def get_job(record_store: RecordStore, job_id: str) -> dict:
    job = record_store.get("analysis_jobs", job_id)
    if job is None:
        raise NotFoundError("Job not found.")
    return job


def claim_job_slot(key: str, job_id: str) -> Optional[str]:
    """Register job_id under key; returns the already running job id instead when there is one."""
    with _active_jobs_lock:
        running = _active_jobs.get(key)
        if running is not None:
            return running
        _active_jobs[key] = job_id
        return None


def release_job_slot(key: str) -> None:
    with _active_jobs_lock:
        _active_jobs.pop(key, None)


def process_analysis_job(
    record_store: RecordStore,
    object_store: ObjectStore,
    job_id: str,
    plan: AnalysisPlan,
    investor_user_id: str,
    slot_key: str,
) -> None:
    try:
        record_store.update("analysis_jobs", job_id, {"status": "running", "progress": 10})
        result = execute_analysis(
            record_store,
            object_store,
            plan,
            investor_user_id=investor_user_id,
            progress=lambda value: record_store.update("analysis_jobs", job_id, {"progress": value}),
        )
        record_store.update(
            "analysis_jobs",
            job_id,
            {"status": "done", "progress": 100, "result": result, "error": None},
        )
        logger.info("job_id=%s analysis_job_done type=%s", job_id, plan.analysis_type)
    except Exception as exc:
        message = llm_client.truncate(str(exc))
        record_store.update(
            "analysis_jobs",
            job_id,
            {"status": "failed", "progress": 100, "error": message},
        )
        logger.warning("job_id=%s analysis_job_failed type=%s error=%s", job_id, plan.analysis_type, message)
    finally:
        release_job_slot(slot_key)


def start_analysis_job(
    record_store: RecordStore,
    object_store: ObjectStore,
    run_in_background: Callable[..., None],
    plan: AnalysisPlan,
    investor_user_id: str,
) -> Tuple[dict, bool]:
    """Queue an analysis; returns (job, started) where started is False for an already running job."""
    slot_key = f"{plan.analysis['id']}:{plan.analysis_type}"
    job = create_job(
        record_store,
        kind="analysis",
        company_id=plan.company["id"],
        analysis_id=plan.analysis["id"],
        analysis_type=plan.analysis_type,
        requested_by=investor_user_id,
    )
    running = claim_job_slot(slot_key, job["id"])
    if running is not None:
        record_store.delete("analysis_jobs", job["id"])
        logger.info("job_id=%s analysis_already_running key=%s", running, slot_key)
        return get_job(record_store, running), False

    run_in_background(
        process_analysis_job,
        record_store,
        object_store,
        job["id"],
        plan,
        investor_user_id,
        slot_key,
    )
    return job, True
