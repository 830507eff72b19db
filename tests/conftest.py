import threading

import pytest
from fastapi.testclient import TestClient

from pitch_fork.backend import llm_client
from pitch_fork.backend.object_store import LocalObjectStore
from pitch_fork.backend.report_pdf import render_report_pdf
from pitch_fork.backend.storage import InMemoryRecordStore
from pitch_fork.backend.web import create_app


DECK_TEXT = (
    "Acme Robotics builds autonomous warehouse robots for mid-size logistics operators. "
    "The founding team previously shipped robotics products at two public companies. "
    "We have 1.2M ARR, 40 paying customers and are raising a 3M seed round."
)

SCREENING_ACCEPT = '{"recommendation": "Accept", "reason": "Seed-stage robotics company with recurring revenue."}'

ANALYSIS_TEXT = (
    "# Summary\n"
    "The **team** has deep robotics experience.\n"
    "- Strong founders\n"
    "- Clear market\n"
    "Overall Score: 8.5/10"
)


class FakeLLM:
    """Stands in for llm_client.request_chat_completion; replies are queued or computed."""

    def __init__(self):
        self.calls = []
        self.replies = []
        self.default = ANALYSIS_TEXT
        self._lock = threading.Lock()

    def __call__(self, *, system_prompt, user_prompt, **kwargs):
        with self._lock:
            self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt, **kwargs})
            reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply):
            reply = reply(system_prompt, user_prompt)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _run_inline(fn, *args, **kwargs):
    fn(*args, **kwargs)


def make_deck_pdf(text: str = DECK_TEXT) -> bytes:
    return render_report_pdf(title="Acme Robotics Pitch", company_name="Acme Robotics", body=text, model="deck")


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", "test-secret")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SMTP_USER", raising=False)
    monkeypatch.delenv("SMTP_PASSWORD", raising=False)
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)


@pytest.fixture()
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm_client, "request_chat_completion", fake)
    monkeypatch.setattr(llm_client, "model_name", lambda: "gpt-test")
    return fake


@pytest.fixture()
def record_store():
    return InMemoryRecordStore()


@pytest.fixture()
def object_store(tmp_path):
    return LocalObjectStore(tmp_path / "storage", public_base_url="http://testserver")


@pytest.fixture()
def app(record_store, object_store):
    application = create_app(record_store=record_store, object_store=object_store)
    application.state.run_in_background = _run_inline
    return application


@pytest.fixture()
def client(app):
    return TestClient(app)


def signup_headers(client: TestClient, email: str, user_type: str = "investor") -> dict:
    r = client.post(
        "/api/auth/signup",
        json={
            "email": email,
            "password": "correct-horse",
            "confirm_password": "correct-horse",
            "first_name": "Test",
            "last_name": user_type.title(),
            "user_type": user_type,
        },
    )
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture()
def investor_headers(client):
    headers = signup_headers(client, "ivy@fund.example.com")
    r = client.put(
        "/api/investor/preferences",
        json={"firm_name": "Ivy Ventures", "investment_criteria_doc": "Seed robotics with revenue."},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    return headers


@pytest.fixture()
def founder_headers(client):
    return signup_headers(client, "founder@acme.example.com", user_type="founder")


@pytest.fixture()
def company(client, investor_headers):
    r = client.post(
        "/api/companies",
        json={"name": "Acme Robotics", "industry": "Robotics; Logistics", "email_1": "founder@acme.example.com"},
        headers=investor_headers,
    )
    assert r.status_code == 200, r.text
    return r.json()["company"]


@pytest.fixture()
def company_with_deck(client, investor_headers, company):
    r = client.post(
        f"/api/companies/{company['id']}/documents",
        files={"files": ("acme-deck.pdf", make_deck_pdf(), "application/pdf")},
        headers=investor_headers,
    )
    assert r.status_code == 200, r.text
    return company
