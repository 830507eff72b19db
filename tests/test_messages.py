import smtplib

import pytest

from pitch_fork.backend import notifications


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.user = user

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


def test_email_requires_configuration(client, founder_headers):
    r = client.post(
        "/api/messages/email",
        json={"message_title": "Question", "message_detail": "When is the call?"},
        headers=founder_headers,
    )
    assert r.status_code == 502
    assert "SMTP_USER" in r.json()["detail"]


def test_email_requires_title_and_detail(client, founder_headers):
    r = client.post("/api/messages/email", json={"message_title": "Question"}, headers=founder_headers)
    assert r.status_code == 400


def test_email_is_sent_and_recorded(client, founder_headers, record_store, monkeypatch):
    monkeypatch.setenv("SMTP_USER", "bot@pitchfork.example.com")
    monkeypatch.setenv("SMTP_PASSWORD", "app-password")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@pitchfork.example.com")
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []

    r = client.post(
        "/api/messages/email",
        json={"message_title": "Question", "message_detail": "When is the call?", "company_name": "Acme Robotics"},
        headers=founder_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "message": "Email sent successfully"}

    [msg] = FakeSMTP.sent
    assert msg["To"] == "admin@pitchfork.example.com"
    assert msg["Subject"] == "Question"
    assert "Company: Acme Robotics" in msg.get_payload()[0].get_payload()

    [recorded] = record_store.find("messages", filters={"recipient_type": "admin"})
    assert recorded["message_title"] == "Question"
    assert recorded["sender_type"] == "founder"


def test_smtp_failures_become_runtime_errors(monkeypatch):
    class BrokenSMTP(FakeSMTP):
        def login(self, user, password):
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)
    with pytest.raises(RuntimeError, match="Failed to send email"):
        notifications._deliver(notifications.MIMEMultipart(), "user", "password")
