import json
from datetime import datetime, timezone

import pytest

from conftest import make_deck_pdf, signup_headers
from pitch_fork.backend.analysis_records import find_or_create_analysis
from pitch_fork.backend.companies import create_company
from pitch_fork.backend.messages import WELCOME_TITLE


def _submit(client, headers, name="Acme Robotics"):
    return client.post(
        "/api/founder/submissions",
        data={"company": json.dumps({"name": name, "industry": "Robotics", "email_1": "founder@acme.example.com"})},
        files={"files": ("acme-deck.pdf", make_deck_pdf(), "application/pdf")},
        headers=headers,
    )


def test_founder_submission_creates_company_documents_and_welcome(client, founder_headers, record_store):
    r = _submit(client, founder_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["created"] is True
    assert body["company"]["status"] == "Submitted"
    assert len(body["documents"]) == 1

    companies = client.get("/api/founder/companies", headers=founder_headers).json()["companies"]
    assert [company["name"] for company in companies] == ["Acme Robotics"]

    inbox = client.get(f"/api/companies/{body['company']['id']}/messages", headers=founder_headers).json()["messages"]
    assert inbox[0]["message_title"] == WELCOME_TITLE
    assert inbox[0]["message_status"] == "unread"

    read = client.post(f"/api/messages/{inbox[0]['id']}/read", headers=founder_headers)
    assert read.json()["message_status"] == "read"


def test_founder_submission_requires_files_and_contact(client, founder_headers, record_store):
    no_name = client.post(
        "/api/founder/submissions",
        data={"company": json.dumps({"industry": "Robotics"})},
        files={"files": ("acme-deck.pdf", make_deck_pdf(), "application/pdf")},
        headers=founder_headers,
    )
    assert no_name.status_code == 400
    assert record_store.find("companies") == []

    bad_payload = client.post(
        "/api/founder/submissions",
        data={"company": "{not json"},
        files={"files": ("acme-deck.pdf", make_deck_pdf(), "application/pdf")},
        headers=founder_headers,
    )
    assert bad_payload.status_code == 400


def test_failed_upload_drops_newly_created_company(client, founder_headers, record_store):
    r = client.post(
        "/api/founder/submissions",
        data={"company": json.dumps({"name": "Gamma", "email_1": "founder@acme.example.com"})},
        files={"files": ("notes.txt", b"hello", "text/plain")},
        headers=founder_headers,
    )
    assert r.status_code == 400
    assert record_store.find("companies") == []


def test_founder_cannot_read_another_founders_company(client, founder_headers):
    company_id = _submit(client, founder_headers).json()["company"]["id"]
    other = signup_headers(client, "other@founder.example.com", user_type="founder")
    assert client.get(f"/api/companies/{company_id}", headers=other).status_code == 403
    assert client.get(f"/api/companies/{company_id}/messages", headers=other).status_code == 403


def test_select_investors_creates_analysis_rows_once(client, founder_headers, investor_headers, record_store):
    company_id = _submit(client, founder_headers).json()["company"]["id"]
    investors = client.get("/api/investors", headers=founder_headers).json()["investors"]
    assert [investor["firm_name"] for investor in investors] == ["Ivy Ventures"]
    investor_id = investors[0]["user_id"]

    first = client.post(
        f"/api/companies/{company_id}/investors",
        json={"investor_user_ids": [investor_id, investor_id]},
        headers=founder_headers,
    )
    assert first.json() == {"created": 1}
    again = client.post(
        f"/api/companies/{company_id}/investors",
        json={"investor_user_ids": [investor_id]},
        headers=founder_headers,
    )
    assert again.json() == {"created": 0}

    [analysis] = record_store.find("analysis", filters={"company_id": company_id})
    assert analysis["status"] == "submitted"

    dashboard = client.get("/api/dashboard", headers=investor_headers).json()["companies"]
    assert dashboard[0]["id"] == company_id
    assert dashboard[0]["analysis"][0]["status"] == "submitted"


def test_select_investors_requires_a_known_investor(client, founder_headers):
    company_id = _submit(client, founder_headers).json()["company"]["id"]
    empty = client.post(f"/api/companies/{company_id}/investors", json={"investor_user_ids": []}, headers=founder_headers)
    assert empty.status_code == 400
    unknown = client.post(
        f"/api/companies/{company_id}/investors", json={"investor_user_ids": ["ghost"]}, headers=founder_headers
    )
    assert unknown.status_code == 400


def test_founder_submission_cannot_set_score_fields(client, founder_headers, record_store):
    r = client.post(
        "/api/founder/submissions",
        data={"company": json.dumps({"name": "Self Score Inc", "overall_score": 10, "recommendation": "Invest"})},
        files={"files": ("deck.pdf", make_deck_pdf(), "application/pdf")},
        headers=founder_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["company"]["overall_score"] is None
    assert r.json()["company"]["recommendation"] is None

    [stored] = record_store.find("companies")
    assert stored["overall_score"] is None
    assert stored["recommendation"] is None

    with pytest.raises(ValueError, match="Unknown company fields: overall_score"):
        create_company(record_store, {"name": "Other Inc", "overall_score": 9})


def test_reused_company_returns_only_id_and_name(client, founder_headers, record_store):
    first = _submit(client, founder_headers).json()["company"]
    other = signup_headers(client, "other@founder.example.com", user_type="founder")

    r = _submit(client, other)
    assert r.status_code == 200, r.text
    assert r.json()["created"] is False
    assert r.json()["company"] == {"id": first["id"], "name": "Acme Robotics"}


def test_investor_dashboard_orders_newest_first_and_skips_missing_companies(client, investor_headers, record_store):
    investor_id = client.get("/api/auth/me", headers=investor_headers).json()["id"]
    submitted = {"Older Co": 1, "Newer Co": 3, "Gone Co": 2}
    ids = {}
    for name, month in submitted.items():
        company, _ = create_company(record_store, {"name": name})
        record_store.update("companies", company["id"], {"date_submitted": datetime(2026, month, 1, tzinfo=timezone.utc)})
        find_or_create_analysis(record_store, company["id"], investor_id)
        ids[name] = company["id"]
    record_store.delete("companies", ids["Gone Co"])

    dashboard = client.get("/api/dashboard", headers=investor_headers).json()["companies"]
    assert [company["name"] for company in dashboard] == ["Newer Co", "Older Co"]
    assert all(len(company["analysis"]) == 1 for company in dashboard)
