import io
from datetime import datetime, timezone

from pypdf import PdfReader

from pitch_fork.backend.report_pdf import FOOTER_NOTE, format_generated_at, render_report_pdf, to_latin1


def _text(pdf_bytes: bytes) -> list:
    return [page.extract_text() for page in PdfReader(io.BytesIO(pdf_bytes)).pages]


def test_to_latin1_transliterates_common_llm_punctuation():
    assert to_latin1("“Great” — it’s • ok…") == '"Great" - it\'s - ok...'
    assert to_latin1("café") == "café"
    assert to_latin1("中") == "?"


def test_format_generated_at():
    moment = datetime(2024, 3, 5, 14, 7, tzinfo=timezone.utc)
    assert format_generated_at(moment) == "March 5, 2024 at 02:07 PM"


def test_render_report_has_header_body_and_footer():
    pdf_bytes = render_report_pdf(
        title="Market Analysis Report",
        company_name="Acme Robotics",
        body="# Overview\nA **large** market, growing fast.\n- Point one",
        model="gpt-test",
        generated_at=datetime(2024, 3, 5, 9, 30, tzinfo=timezone.utc),
    )
    assert pdf_bytes.startswith(b"%PDF")
    [page] = _text(pdf_bytes)
    assert "CONFIDENTIAL" in page
    assert "Market Analysis Report" in page
    assert "Company: Acme Robotics" in page
    assert "Generated: March 5, 2024 at 09:30 AM" in page
    assert "Overview" in page
    assert "Page 1 of 1" in page
    assert FOOTER_NOTE in page


def test_long_reports_break_pages_and_number_them():
    body = "\n".join(f"Paragraph {index}: the unit economics look healthy." for index in range(120))
    pages = _text(render_report_pdf(title="Financial Analysis Report", company_name="Acme", body=body, model="m"))
    assert len(pages) > 1
    assert f"Page 2 of {len(pages)}" in pages[1]
