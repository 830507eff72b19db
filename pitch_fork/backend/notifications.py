import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from .messages import post_message
from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")

DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
DEFAULT_REPLY_TO = "admin@pitchfork.com"
DEFAULT_SENDER_NAME = "Pitch Fork User"


def _smtp_credentials() -> tuple[str, str]:
    user = os.getenv("SMTP_USER", "").strip()
    password = os.getenv("SMTP_PASSWORD", "").strip()
    if not user or not password:
        raise RuntimeError("Email credentials not configured. Set SMTP_USER and SMTP_PASSWORD.")
    return user, password


def _admin_email() -> str:
    admin = os.getenv("ADMIN_EMAIL", "").strip()
    if not admin:
        raise RuntimeError("ADMIN_EMAIL is not set.")
    return admin


def build_email_body(sender_name: str, company_name: str, message_detail: str, reply_to: str) -> str:
    return (
        f"From: {sender_name}\n"
        f"Company: {company_name}\n"
        f"Reply-To: {reply_to}\n\n"
        f"Message:\n{message_detail}\n\n"
        "---\n"
        "This message was sent via Pitch Fork platform."
    )


def _deliver(msg: MIMEMultipart, smtp_user: str, smtp_password: str) -> None:
    host = os.getenv("SMTP_HOST", DEFAULT_SMTP_HOST).strip() or DEFAULT_SMTP_HOST
    port = int(os.getenv("SMTP_PORT", str(DEFAULT_SMTP_PORT)))
    try:
        if port == 465:
            with smtplib.SMTP_SSL(host, port, timeout=30) as server:
                server.login(smtp_user, smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.starttls()
                server.login(smtp_user, smtp_password)
                server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise RuntimeError(f"Failed to send email: {exc}") from exc


def send_message_email(
    record_store: RecordStore,
    sender: dict,
    *,
    message_title: Optional[str],
    message_detail: Optional[str],
    company_name: Optional[str] = None,
    company_id: Optional[str] = None,
) -> dict:
    title = (message_title or "").strip()
    detail = (message_detail or "").strip()
    if not title or not detail:
        raise ValueError("Message title and detail are required")

    smtp_user, smtp_password = _smtp_credentials()
    to_email = _admin_email()
    reply_to = os.getenv("REPLY_TO_EMAIL", DEFAULT_REPLY_TO).strip() or DEFAULT_REPLY_TO
    sender_name = sender.get("name") or sender.get("email") or DEFAULT_SENDER_NAME

    msg = MIMEMultipart()
    msg["Subject"] = title
    msg["From"] = formataddr((sender_name, smtp_user))
    msg["To"] = to_email
    msg["Reply-To"] = reply_to
    msg.attach(MIMEText(build_email_body(sender_name, company_name or "", detail, reply_to), "plain"))

    _deliver(msg, smtp_user, smtp_password)
    logger.info("user_id=%s message_email_sent to=%s title=%s", sender.get("id"), to_email, title)

    post_message(
        record_store,
        company_id=company_id,
        title=title,
        detail=detail,
        sender_type=sender.get("user_type") or "user",
        sender_id=sender.get("id"),
        recipient_type="admin",
    )
    return {"success": True, "message": "Email sent successfully"}
