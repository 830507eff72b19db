import io
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pypdf import PdfReader
from pypdf.errors import PyPdfError
from pptx import Presentation
from pptx.exc import PackageNotFoundError

from .constants import ALLOWED_DOCUMENT_EXTENSIONS


TEXT_EXTRACTABLE_EXTENSIONS = {".pdf", ".pptx"}


@dataclass
class ExtractedText:
    text: str
    pages: List[dict]
    num_pages_or_slides: int


def detect_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def sanitize_filename(filename: str) -> str:
    candidate = Path((filename or "").replace("\\", "/")).name
    sanitized = re.sub(r"[^A-Za-z0-9._-]", "_", candidate)
    if sanitized.strip(".") == "":
        sanitized = "document"

    stem = Path(sanitized).stem[:120] or "document"
    ext = Path(sanitized).suffix[:20]
    return f"{stem}{ext}"


def validate_document_extension(filename: str) -> str:
    extension = detect_extension(filename)
    if extension not in ALLOWED_DOCUMENT_EXTENSIONS:
        allowed = ", ".join(sorted(ALLOWED_DOCUMENT_EXTENSIONS))
        raise ValueError(f"Unsupported file type for {filename!r}. Allowed types: {allowed}.")
    return extension


def extract_document_text(filename: str, data: bytes) -> Optional[ExtractedText]:
    """Text of a PDF or PPTX; None for formats without a text extractor."""
    extension = detect_extension(filename)
    try:
        if extension == ".pdf":
            return _extract_pdf(data)
        if extension == ".pptx":
            return _extract_pptx(data)
    except (PyPdfError, zipfile.BadZipFile, PackageNotFoundError) as exc:
        raise ValueError(f"Could not read {filename}: the file is corrupt or not a valid {extension[1:].upper()}.") from exc
    return None


def _extract_pdf(data: bytes) -> ExtractedText:
    reader = PdfReader(io.BytesIO(data))
    entries: List[dict] = []
    merged: List[str] = []

    for index, page in enumerate(reader.pages, start=1):
        text = (page.extract_text() or "").strip()
        entries.append({"index": index, "text": text})
        merged.append(f"PAGE {index}: {text}")

    return ExtractedText(
        text="\n\n".join(merged).strip(),
        pages=entries,
        num_pages_or_slides=len(reader.pages),
    )


def _extract_pptx(data: bytes) -> ExtractedText:
    presentation = Presentation(io.BytesIO(data))
    entries: List[dict] = []
    merged: List[str] = []

    for index, slide in enumerate(presentation.slides, start=1):
        chunks = [shape.text.strip() for shape in slide.shapes if getattr(shape, "text", "")]
        slide_text = "\n".join(chunk for chunk in chunks if chunk)
        entries.append({"index": index, "text": slide_text})
        merged.append(f"SLIDE {index}: {slide_text}")

    return ExtractedText(
        text="\n\n".join(merged).strip(),
        pages=entries,
        num_pages_or_slides=len(presentation.slides),
    )


def readable_length(extracted: Optional[ExtractedText]) -> int:
    """Characters of real content, ignoring the PAGE/SLIDE markers."""
    if extracted is None:
        return 0
    return sum(len(entry["text"].strip()) for entry in extracted.pages)
