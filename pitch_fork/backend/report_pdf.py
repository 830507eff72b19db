from datetime import datetime
from typing import Optional

from fpdf import FPDF

from .models import utc_now


MARGIN = 20
LINE_HEIGHT = 6
FOOTER_NOTE = "Confidential - For Investment Decision Making Only"

# Core PDF fonts only cover Latin-1; LLM output often does not.
_LATIN1_REPLACEMENTS = {
    "\N{LEFT SINGLE QUOTATION MARK}": "'",
    "\N{RIGHT SINGLE QUOTATION MARK}": "'",
    "\N{LEFT DOUBLE QUOTATION MARK}": '"',
    "\N{RIGHT DOUBLE QUOTATION MARK}": '"',
    "\N{EN DASH}": "-",
    "\N{EM DASH}": "-",
    "\N{MINUS SIGN}": "-",
    "\N{BULLET}": "-",
    "\N{BLACK CIRCLE}": "-",
    "\N{HORIZONTAL ELLIPSIS}": "...",
    "\N{NO-BREAK SPACE}": " ",
    "\N{NARROW NO-BREAK SPACE}": " ",
    "\N{ZERO WIDTH SPACE}": "",
    "\N{RIGHTWARDS ARROW}": "->",
    "\N{LEFTWARDS ARROW}": "<-",
    "\N{LESS-THAN OR EQUAL TO}": "<=",
    "\N{GREATER-THAN OR EQUAL TO}": ">=",
    "\N{CHECK MARK}": "v",
    "\N{EURO SIGN}": "EUR",
}


def to_latin1(text: str) -> str:
    value = "".join(_LATIN1_REPLACEMENTS.get(char, char) for char in (text or ""))
    return value.encode("latin-1", "replace").decode("latin-1")


def format_generated_at(moment: datetime) -> str:
    return f"{moment:%B} {moment.day}, {moment.year} at {moment:%I:%M %p}"


class ReportPDF(FPDF):
    def footer(self) -> None:
        self.set_y(-15)
        self.set_font("Helvetica", size=8)
        self.set_text_color(128, 128, 128)
        self.cell(0, 4, f"Page {self.page_no()} of {{nb}}", align="C", new_x="LMARGIN", new_y="NEXT")
        self.cell(0, 4, FOOTER_NOTE, align="L")
        self.set_text_color(0, 0, 0)


def _write_header(pdf: ReportPDF, title: str, company_name: str, model: str, generated_at: datetime) -> None:
    pdf.set_font("Helvetica", "B", 10)
    pdf.set_text_color(200, 0, 0)
    pdf.set_xy(pdf.w - MARGIN - 40, MARGIN - 10)
    pdf.cell(40, 6, "CONFIDENTIAL", align="R")

    pdf.set_text_color(0, 0, 0)
    pdf.set_xy(MARGIN, MARGIN)
    pdf.set_font("Helvetica", "B", 24)
    pdf.multi_cell(0, 10, to_latin1(title), new_x="LMARGIN", new_y="NEXT")

    pdf.set_font("Helvetica", size=16)
    pdf.multi_cell(0, 8, to_latin1(f"Company: {company_name}"), new_x="LMARGIN", new_y="NEXT")

    pdf.set_font("Helvetica", size=10)
    pdf.set_text_color(100, 100, 100)
    pdf.cell(0, 6, f"Generated: {format_generated_at(generated_at)}", new_x="LMARGIN", new_y="NEXT")
    pdf.cell(0, 6, to_latin1(f"Model: {model}"), new_x="LMARGIN", new_y="NEXT")
    pdf.set_text_color(0, 0, 0)

    pdf.ln(2)
    pdf.set_draw_color(180, 180, 180)
    pdf.line(MARGIN, pdf.get_y(), pdf.w - MARGIN, pdf.get_y())
    pdf.ln(6)


def _write_rich_line(pdf: ReportPDF, line: str, size: int, bold: bool = False) -> None:
    # Odd-numbered segments sit between ** markers.
    for index, segment in enumerate(line.split("**")):
        if not segment:
            continue
        pdf.set_font("Helvetica", "B" if bold or index % 2 else "", size)
        pdf.write(LINE_HEIGHT, to_latin1(segment))
    pdf.ln(LINE_HEIGHT)


def _write_body(pdf: ReportPDF, body: str) -> None:
    for raw_line in (body or "").replace("\r\n", "\n").split("\n"):
        line = raw_line.rstrip()
        if not line.strip():
            pdf.ln(LINE_HEIGHT / 2)
            continue

        stripped = line.lstrip()
        if stripped.startswith("#"):
            heading = stripped.lstrip("#").strip()
            pdf.ln(2)
            _write_rich_line(pdf, heading, 13, bold=True)
            continue
        if stripped.startswith(("- ", "* ")):
            line = "  - " + stripped[2:]
        _write_rich_line(pdf, line, 11)


def render_report_pdf(
    *,
    title: str,
    company_name: str,
    body: str,
    model: str,
    generated_at: Optional[datetime] = None,
) -> bytes:
    pdf = ReportPDF(orientation="P", unit="mm", format="A4")
    pdf.set_margins(MARGIN, MARGIN, MARGIN)
    pdf.set_auto_page_break(auto=True, margin=25)
    pdf.set_title(to_latin1(title))
    pdf.set_author("Pitch Fork")
    pdf.add_page()

    _write_header(pdf, title, company_name, model, generated_at or utc_now())
    _write_body(pdf, body)
    return bytes(pdf.output())
