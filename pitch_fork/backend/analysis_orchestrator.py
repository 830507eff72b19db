from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from . import llm_client
from .analysis import (
    AnalysisPlan,
    claim_job_slot,
    create_job,
    execute_analysis,
    get_job,
    mark_analysis_failed,
    prepare_analysis,
    release_job_slot,
)
from .analysis_records import get_analysis
from .object_store import ObjectStore
from .prompts.analysis import CATEGORY_TYPES
from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")

CATEGORY_PROGRESS_STEP = 20


def _run_full_analysis(
    record_store: RecordStore,
    object_store: ObjectStore,
    job_id: str,
    plans: list[AnalysisPlan],
    investor_user_id: str,
    slot_key: str,
) -> None:
    start_ts = time.monotonic()
    company_id = plans[0].company["id"]
    analysis_id = plans[0].analysis["id"]
    reports: dict[str, dict] = {}
    failures: list[str] = []

    try:
        record_store.update("analysis_jobs", job_id, {"status": "running", "progress": 5})
        logger.info(
            "job_id=%s full_analysis_started analysis_id=%s categories=%s",
            job_id,
            analysis_id,
            [plan.analysis_type for plan in plans],
        )

        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = {
                pool.submit(
                    execute_analysis,
                    record_store,
                    object_store,
                    plan,
                    investor_user_id=investor_user_id,
                    notify=False,
                    finalize=False,
                ): plan.analysis_type
                for plan in plans
            }
            for future in as_completed(futures):
                analysis_type = futures[future]
                try:
                    reports[analysis_type] = future.result()["report"]
                    logger.info("job_id=%s full_analysis_category_done type=%s", job_id, analysis_type)
                except Exception as exc:
                    failures.append(f"{analysis_type} ({llm_client.truncate(str(exc), 300)})")
                    logger.warning(
                        "job_id=%s full_analysis_category_failed type=%s error=%s",
                        job_id,
                        analysis_type,
                        exc,
                    )
                record_store.update(
                    "analysis_jobs",
                    job_id,
                    {"progress": 5 + CATEGORY_PROGRESS_STEP * (len(reports) + len(failures))},
                )

        if failures:
            mark_analysis_failed(record_store, analysis_id)
            message = "Score-Card skipped because category analyses failed: " + ", ".join(sorted(failures))
            record_store.update(
                "analysis_jobs",
                job_id,
                {"status": "failed", "progress": 100, "error": llm_client.truncate(message), "result": {"reports": reports}},
            )
            logger.warning("job_id=%s full_analysis_scorecard_skipped failures=%s", job_id, failures)
            return

        scorecard_plan = prepare_analysis(
            record_store,
            company_id=company_id,
            analysis_type="scorecard",
            investor_user_id=investor_user_id,
            analysis_id=analysis_id,
        )
        scorecard = execute_analysis(
            record_store,
            object_store,
            scorecard_plan,
            investor_user_id=investor_user_id,
        )
        reports["scorecard"] = scorecard["report"]
        record_store.update(
            "analysis_jobs",
            job_id,
            {
                "status": "done",
                "progress": 100,
                "error": None,
                "result": {
                    "analysis_id": analysis_id,
                    "reports": reports,
                    "overall_score": scorecard["overall_score"],
                },
            },
        )
    except Exception as exc:
        message = llm_client.truncate(str(exc))
        mark_analysis_failed(record_store, analysis_id)
        record_store.update("analysis_jobs", job_id, {"status": "failed", "progress": 100, "error": message})
        logger.error("job_id=%s full_analysis_unhandled_error", job_id, exc_info=True)
    finally:
        release_job_slot(slot_key)
        logger.info(
            "job_id=%s full_analysis_finished elapsed_ms=%s",
            job_id,
            int((time.monotonic() - start_ts) * 1000),
        )


def ensure_full_analysis_started(
    record_store: RecordStore,
    object_store: ObjectStore,
    run_in_background: Callable[..., None],
    *,
    analysis_id: str,
    investor_user_id: str,
) -> tuple[dict, bool]:
    """Run the four category analyses in parallel, then the Score-Card from their reports."""
    analysis = get_analysis(record_store, analysis_id)
    plans = [
        prepare_analysis(
            record_store,
            company_id=analysis["company_id"],
            analysis_type=analysis_type,
            investor_user_id=investor_user_id,
            analysis_id=analysis_id,
        )
        for analysis_type in CATEGORY_TYPES
    ]

    slot_key = f"{analysis_id}:full"
    job = create_job(
        record_store,
        kind="full_analysis",
        company_id=analysis["company_id"],
        analysis_id=analysis_id,
        analysis_type=None,
        requested_by=investor_user_id,
    )
    running = claim_job_slot(slot_key, job["id"])
    if running is not None:
        record_store.delete("analysis_jobs", job["id"])
        logger.info("job_id=%s full_analysis_already_running analysis_id=%s", running, analysis_id)
        return get_job(record_store, running), False

    run_in_background(
        _run_full_analysis,
        record_store,
        object_store,
        job["id"],
        plans,
        investor_user_id,
        slot_key,
    )
    return job, True
