import io
import time

import pytest
from pypdf import PdfReader

from conftest import ANALYSIS_TEXT, make_deck_pdf, signup_headers
from pitch_fork.backend.analysis import (
    claim_job_slot,
    execute_analysis,
    parse_overall_score,
    prepare_analysis,
    release_job_slot,
)
from pitch_fork.backend.analysis_records import find_or_create_analysis
from pitch_fork.backend.companies import create_company
from pitch_fork.backend.constants import REPORTS_BUCKET
from pitch_fork.backend.documents import IncomingFile, upload_documents
from pitch_fork.backend.prompt_library import get_prompt_by_name, seed_default_prompts
from pitch_fork.backend.prompts.analysis import FORMAT_RULES
from pitch_fork.backend.storage import InMemoryRecordStore


def _run(client, headers, company_id, analysis_type, **extra):
    r = client.post("/api/analyses", json={"company_id": company_id, "analysis_type": analysis_type, **extra}, headers=headers)
    assert r.status_code == 200, r.text
    job = client.get(f"/api/jobs/{r.json()['job_id']}", headers=headers)
    assert job.status_code == 200
    return job.json()


def test_team_analysis_writes_pdf_report_and_records(client, investor_headers, company_with_deck, fake_llm, record_store, object_store):
    company_id = company_with_deck["id"]
    job = _run(client, investor_headers, company_id, "team")
    assert job["status"] == "done", job["error"]
    assert job["progress"] == 100

    report = job["result"]["report"]
    assert report["file_path"].startswith(f"{company_id}/acme-robotics_team-analysis_")
    assert report["file_path"].endswith(".pdf")
    assert object_store.exists(REPORTS_BUCKET, report["file_path"])

    pdf_text = "\n".join(page.extract_text() for page in PdfReader(io.BytesIO(object_store.download_bytes(REPORTS_BUCKET, report["file_path"]))).pages)
    assert "Team Analysis Report" in pdf_text
    assert "Company: Acme Robotics" in pdf_text
    assert "Model: gpt-test" in pdf_text

    [row] = record_store.find("analysis_reports", filters={"company_id": company_id})
    assert row["report_type"] == "team-analysis"
    assert row["id"] == report["id"]

    stored = record_store.find_one("extracted_data", filters={"file_path": report["file_path"]})
    assert stored["extracted_info"]["analysis_result"] == ANALYSIS_TEXT
    assert stored["extracted_info"]["model_used"] == "gpt-test"
    assert stored["extracted_info"]["documents_analyzed"] == "DOCUMENT acme-deck"

    analysis = record_store.get("analysis", job["analysis_id"])
    assert analysis["status"] == "analyzed"
    assert analysis["history"].endswith(": Analyze-Team")
    assert analysis["overall_score"] is None
    assert record_store.get("companies", company_id)["status"] == "Analyzed"

    titles = [message["message_title"] for message in record_store.find("messages", filters={"company_id": company_id})]
    assert titles == ["Analysis Complete"]

    assert FORMAT_RULES in fake_llm.calls[0]["system_prompt"]
    assert "Acme Robotics builds autonomous" in fake_llm.calls[0]["user_prompt"]

    download = client.get(report["download_url"])
    assert download.status_code == 200
    assert download.content.startswith(b"%PDF")

    reports = client.get(f"/api/companies/{company_id}/reports", headers=investor_headers).json()["reports"]
    assert [item["id"] for item in reports] == [report["id"]]


def test_failed_report_insert_leaves_no_orphaned_pdf(object_store, fake_llm):
    class FailingReportStore(InMemoryRecordStore):
        def insert(self, table, values):
            if table == "analysis_reports":
                raise RuntimeError("database unavailable")
            return super().insert(table, values)

    record_store = FailingReportStore()
    seed_default_prompts(record_store)
    company, _ = create_company(record_store, {"name": "Acme Robotics"})
    upload_documents(
        record_store,
        object_store,
        company["id"],
        [IncomingFile(filename="acme-deck.pdf", content_type="application/pdf", data=make_deck_pdf())],
    )

    plan = prepare_analysis(record_store, company_id=company["id"], analysis_type="team", investor_user_id="inv-1")
    with pytest.raises(RuntimeError, match="database unavailable"):
        execute_analysis(record_store, object_store, plan, investor_user_id="inv-1")

    assert object_store.list(REPORTS_BUCKET) == []
    assert record_store.get("analysis", plan.analysis["id"])["status"] == "failed"
    assert record_store.find("extracted_data") == []


def test_failed_llm_call_fails_job_and_analysis(client, investor_headers, company_with_deck, fake_llm, record_store):
    fake_llm.default = RuntimeError("LLM request failed (500): upstream boom")
    job = _run(client, investor_headers, company_with_deck["id"], "product")
    assert job["status"] == "failed"
    assert "upstream boom" in job["error"]
    assert record_store.get("analysis", job["analysis_id"])["status"] == "failed"
    assert record_store.find("analysis_reports") == []


def test_scorecard_builds_on_category_reports(client, investor_headers, company_with_deck, fake_llm, record_store):
    company_id = company_with_deck["id"]
    assert _run(client, investor_headers, company_id, "team")["status"] == "done"

    job = _run(client, investor_headers, company_id, "scorecard")
    assert job["status"] == "done", job["error"]
    assert job["result"]["report"]["file_name"].startswith("acme-robotics_scorecard_")

    user_prompt = fake_llm.calls[-1]["user_prompt"]
    assert "=== REPORT team-analysis ===" in user_prompt
    assert "=== DOCUMENT" not in user_prompt

    company = record_store.get("companies", company_id)
    assert company["overall_score"] == 8.5
    assert company["recommendation"] == "Invest"
    analysis = record_store.get("analysis", job["analysis_id"])
    assert analysis["recommendation"] == "Invest"
    assert analysis["history"].splitlines()[-1].endswith(": Create-ScoreCard")

    latest = record_store.find("messages", filters={"company_id": company_id}, order_by="date_sent", descending=True)[0]
    assert "8.5/10" in latest["message_detail"]


def test_composite_without_reports_reads_documents(client, investor_headers, company_with_deck, fake_llm):
    job = _run(client, investor_headers, company_with_deck["id"], "founder-report")
    assert job["status"] == "done", job["error"]
    assert "=== DOCUMENT acme-deck ===" in fake_llm.calls[-1]["user_prompt"]


def test_analysis_skips_corrupt_documents(client, investor_headers, company_with_deck, fake_llm):
    r = client.post(
        f"/api/companies/{company_with_deck['id']}/documents",
        files={"files": ("broken.pdf", b"not a pdf at all" * 20, "application/pdf")},
        headers=investor_headers,
    )
    assert r.status_code == 200, r.text

    job = _run(client, investor_headers, company_with_deck["id"], "team")
    assert job["status"] == "done", job["error"]
    prompt = fake_llm.calls[-1]["user_prompt"]
    assert "=== DOCUMENT acme-deck ===" in prompt
    assert "broken" not in prompt


def test_request_validation(client, investor_headers, company, company_with_deck, fake_llm, record_store):
    bad_type = client.post("/api/analyses", json={"company_id": company["id"], "analysis_type": "vibes"}, headers=investor_headers)
    assert bad_type.status_code == 400

    unknown_document = client.post(
        "/api/analyses",
        json={"company_id": company["id"], "analysis_type": "team", "document_ids": ["missing"]},
        headers=investor_headers,
    )
    assert unknown_document.status_code == 400

    record_store.delete("prompts", get_prompt_by_name(record_store, "Market-Analysis")["id"])
    no_prompt = client.post("/api/analyses", json={"company_id": company["id"], "analysis_type": "market"}, headers=investor_headers)
    assert no_prompt.status_code == 404

    job = _run(client, investor_headers, company["id"], "market", prompt="Assess the market size.")
    assert job["status"] == "done"
    assert fake_llm.calls[-1]["user_prompt"].startswith("Assess the market size.")


def test_analysis_without_documents_is_rejected(client, investor_headers):
    r = client.post("/api/companies", json={"name": "Empty Co"}, headers=investor_headers)
    company_id = r.json()["company"]["id"]
    r = client.post("/api/analyses", json={"company_id": company_id, "analysis_type": "team"}, headers=investor_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "No documents provided for analysis"


def test_job_slot_guards_duplicate_runs():
    assert claim_job_slot("analysis-1:team", "job-a") is None
    assert claim_job_slot("analysis-1:team", "job-b") == "job-a"
    assert claim_job_slot("analysis-1:market", "job-c") is None
    release_job_slot("analysis-1:team")
    release_job_slot("analysis-1:market")
    assert claim_job_slot("analysis-1:team", "job-d") is None
    release_job_slot("analysis-1:team")


def test_running_analysis_returns_existing_job(client, investor_headers, company_with_deck, fake_llm, record_store, app):
    started = []
    app.state.run_in_background = lambda fn, *args, **kwargs: started.append(fn)

    first = client.post("/api/analyses", json={"company_id": company_with_deck["id"], "analysis_type": "team"}, headers=investor_headers)
    second = client.post("/api/analyses", json={"company_id": company_with_deck["id"], "analysis_type": "team"}, headers=investor_headers)
    assert first.json()["job_id"] == second.json()["job_id"]
    assert len(started) == 1
    assert len(record_store.find("analysis_jobs")) == 1

    analysis = record_store.find_one("analysis", filters={"company_id": company_with_deck["id"]})
    release_job_slot(f"{analysis['id']}:team")


def test_full_analysis_runs_categories_then_scorecard(client, investor_headers, company_with_deck, fake_llm, record_store):
    investor_id = client.get("/api/auth/me", headers=investor_headers).json()["id"]
    analysis = find_or_create_analysis(record_store, company_with_deck["id"], investor_id)

    r = client.post(f"/api/analyses/{analysis['id']}/full", headers=investor_headers)
    assert r.status_code == 200, r.text
    job = client.get(f"/api/jobs/{r.json()['job_id']}", headers=investor_headers).json()
    assert job["status"] == "done", job["error"]
    assert sorted(job["result"]["reports"]) == ["financial", "market", "product", "scorecard", "team"]
    assert job["result"]["overall_score"] == 8.5

    report_types = sorted(row["report_type"] for row in record_store.find("analysis_reports"))
    assert report_types == ["financial-analysis", "market-analysis", "product-analysis", "scorecard", "team-analysis"]
    history = record_store.get("analysis", analysis["id"])["history"].splitlines()
    assert len(history) == 5
    assert history[-1].endswith(": Create-ScoreCard")
    assert record_store.get("analysis", analysis["id"])["status"] == "analyzed"
    assert record_store.get("companies", company_with_deck["id"])["status"] == "Analyzed"

    messages = record_store.find("messages", filters={"company_id": company_with_deck["id"]})
    assert [message["message_title"] for message in messages] == ["Analysis Complete"]


def test_full_analysis_skips_scorecard_when_a_category_fails(client, investor_headers, company_with_deck, fake_llm, record_store):
    def reply(system_prompt, user_prompt):
        if "market opportunities" in system_prompt:
            return RuntimeError("LLM request timed out.")
        # the other categories finish after the failure
        time.sleep(0.2)
        return ANALYSIS_TEXT

    fake_llm.default = reply
    investor_id = client.get("/api/auth/me", headers=investor_headers).json()["id"]
    analysis = find_or_create_analysis(record_store, company_with_deck["id"], investor_id)

    r = client.post(f"/api/analyses/{analysis['id']}/full", headers=investor_headers)
    job = client.get(f"/api/jobs/{r.json()['job_id']}", headers=investor_headers).json()
    assert job["status"] == "failed"
    assert job["error"].startswith("Score-Card skipped because category analyses failed: market")
    report_types = sorted(row["report_type"] for row in record_store.find("analysis_reports"))
    assert report_types == ["financial-analysis", "product-analysis", "team-analysis"]
    assert record_store.get("analysis", analysis["id"])["status"] == "failed"
    assert record_store.get("companies", company_with_deck["id"])["status"] != "Analyzed"
    history = record_store.get("analysis", analysis["id"])["history"]
    assert "Analyze-Team" in history and "Analyze-Market" not in history


def test_jobs_are_private_to_their_requester(client, investor_headers, company_with_deck, fake_llm):
    job = _run(client, investor_headers, company_with_deck["id"], "team")
    other = signup_headers(client, "other@fund.example.com")
    assert client.get(f"/api/jobs/{job['job_id']}", headers=other).status_code == 403
    assert client.get("/api/jobs/missing", headers=investor_headers).status_code == 404


def test_parse_overall_score():
    assert parse_overall_score("...\nOverall Score: 7/10") == 7.0
    assert parse_overall_score("overall score = 6.5 / 10 then Overall Score: 9/10") == 9.0
    assert parse_overall_score("Overall Score: 14/10") is None
    assert parse_overall_score("no score here") is None
