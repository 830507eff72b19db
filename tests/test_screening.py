from conftest import SCREENING_ACCEPT, signup_headers
from pitch_fork.backend.analysis_records import find_or_create_analysis
from pitch_fork.backend.models import utc_now
from pitch_fork.backend.prompts.screening import NO_DECK_NOTE


def test_screening_accept_maps_to_analyze_and_appends_history(client, investor_headers, company_with_deck, fake_llm, record_store):
    fake_llm.replies.append(SCREENING_ACCEPT)
    r = client.post("/api/screenings", json={"company_id": company_with_deck["id"]}, headers=investor_headers)
    assert r.status_code == 200, r.text
    assert r.json()["recommendation"] == "Accept"
    assert r.json()["status"] == "screened"

    analysis = record_store.get("analysis", r.json()["analysis_id"])
    assert analysis["recommendation"] == "Analyze"
    assert analysis["recommendation_reason"].startswith("Seed-stage robotics")
    assert analysis["history"] == f"{utc_now().date().isoformat()}: Screened"

    prompt = fake_llm.calls[0]["user_prompt"]
    assert "Seed robotics with revenue." in prompt
    assert "Acme Robotics builds autonomous warehouse robots" in prompt
    assert "Company Name: Acme Robotics" in prompt

    fake_llm.replies.append('{"recommendation": "reject", "reason": "Outside thesis."}')
    again = client.post(
        "/api/screenings",
        json={"company_id": company_with_deck["id"], "analysis_id": analysis["id"]},
        headers=investor_headers,
    )
    assert again.json()["recommendation"] == "Reject"
    updated = record_store.get("analysis", analysis["id"])
    assert updated["recommendation"] == "Reject"
    assert len(updated["history"].splitlines()) == 2


def test_screening_without_deck_uses_company_data(client, investor_headers, company, fake_llm):
    fake_llm.replies.append(SCREENING_ACCEPT)
    r = client.post("/api/screenings", json={"company_id": company["id"]}, headers=investor_headers)
    assert r.status_code == 200
    assert NO_DECK_NOTE in fake_llm.calls[0]["user_prompt"]


def test_screening_repairs_invalid_json_once(client, investor_headers, company, fake_llm):
    fake_llm.replies.extend(["Sure! Here you go: recommendation Accept", SCREENING_ACCEPT])
    r = client.post("/api/screenings", json={"company_id": company["id"]}, headers=investor_headers)
    assert r.status_code == 200
    assert len(fake_llm.calls) == 2
    assert "invalid JSON" in fake_llm.calls[1]["user_prompt"]


def test_screening_fails_after_second_invalid_reply(client, investor_headers, company, fake_llm):
    fake_llm.replies.extend(["nope", '{"recommendation": "Maybe", "reason": "?"}'])
    r = client.post("/api/screenings", json={"company_id": company["id"]}, headers=investor_headers)
    assert r.status_code == 502


def test_screening_requires_investor_details(client, company, fake_llm):
    headers = signup_headers(client, "new-investor@fund.example.com")
    r = client.post("/api/screenings", json={"company_id": company["id"]}, headers=headers)
    assert r.status_code == 404
    assert fake_llm.calls == []


def test_screening_unknown_company(client, investor_headers, fake_llm):
    r = client.post("/api/screenings", json={"company_id": "missing"}, headers=investor_headers)
    assert r.status_code == 404


def test_screening_keeps_history_written_while_it_ran(client, investor_headers, company, fake_llm, record_store):
    investor_id = client.get("/api/auth/me", headers=investor_headers).json()["id"]
    analysis = find_or_create_analysis(record_store, company["id"], investor_id)

    def reply(system_prompt, user_prompt):
        record_store.update("analysis", analysis["id"], {"history": "2026-01-05: Analyze-Team"})
        return SCREENING_ACCEPT

    fake_llm.replies.append(reply)
    r = client.post(
        "/api/screenings",
        json={"company_id": company["id"], "analysis_id": analysis["id"]},
        headers=investor_headers,
    )
    assert r.status_code == 200, r.text
    history = record_store.get("analysis", analysis["id"])["history"].splitlines()
    assert history[0] == "2026-01-05: Analyze-Team"
    assert history[1].endswith(": Screened")
