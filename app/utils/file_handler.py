"""
File Handler Utility
Smart QR Health - AI Analysis Pipeline

Resolves stored report files and turns them into text or raw bytes for the
AI pipeline.
"""

import os
import re
import uuid
import logging
from typing import Optional

import chardet
import fitz  # PyMuPDF

from app.core.config import settings

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
TEXT_MIME = "text/plain"

_MIME_BY_EXTENSION = {
    "pdf": PDF_MIME,
    "txt": TEXT_MIME,
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

NO_REPORT_TEXT = "No recent medical report provided."
IMAGE_REPORT_TEXT = "[Image report - text extraction is not supported for profile summaries]"
SCANNED_PDF_TEXT = "[Scanned PDF report - no extractable text layer]"


def normalize_text(text: str) -> str:
    """
    Normalize extracted text for AI processing.
    - Remove excessive whitespace
    - Normalize line endings
    - Remove non-printable characters
    """
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = re.sub(r'[ \t]{2,}', ' ', text)
    return text.strip()


def extract_text_from_txt(content: bytes) -> str:
    """Extract text from TXT file with encoding detection."""
    detected = chardet.detect(content)
    encoding = detected.get("encoding") or "utf-8"
    try:
        text = content.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        text = content.decode("utf-8", errors="replace")
    return normalize_text(text)


def extract_text_from_pdf(content: bytes) -> str:
    """
    Extract text from PDF using PyMuPDF (fitz).
    Returns "" for image-only PDFs; raises ValueError for unreadable files.
    """
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            pages_text = [page.get_text("text") for page in doc]
    except Exception as e:
        raise ValueError(f"PDF processing error: {e}") from e
    return normalize_text("\n".join(pages_text))


def get_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def detect_mime_type(filename: str) -> Optional[str]:
    """Map a stored filename to the mime type used for AI analysis."""
    return _MIME_BY_EXTENSION.get(get_extension(filename))


def build_stored_filename(original_filename: str) -> str:
    """Unique on-disk name that keeps the original extension."""
    ext = get_extension(original_filename)
    return f"{uuid.uuid4().hex}.{ext}" if ext else uuid.uuid4().hex


def resolve_upload_path(file_url: str, uploads_dir: Optional[str] = None) -> Optional[str]:
    """Map a stored `/uploads/<name>` URL to its path under the uploads dir."""
    if not file_url:
        return None
    file_name = file_url.rstrip("/").split("/")[-1]
    if not file_name:
        return None
    return os.path.join(uploads_dir or settings.uploads_dir, file_name)


def load_report_text(file_path: Optional[str], max_chars: Optional[int] = None) -> Optional[str]:
    """
    Turn a stored report file into prompt text.

    Returns None when there is no file on disk, a placeholder for reports
    whose text cannot be extracted here (images, scanned PDFs), and the
    extracted text truncated to `max_chars` otherwise. Raises ValueError
    when a file exists but cannot be read.
    """
    if not file_path or not os.path.exists(file_path):
        if file_path:
            logger.warning("Report file not found: %s", file_path)
        return None

    max_chars = max_chars or settings.report_text_max_chars
    mime_type = detect_mime_type(file_path)

    if mime_type is None:
        return f"[Unsupported report format: .{get_extension(file_path)}]"
    if mime_type.startswith("image/"):
        return IMAGE_REPORT_TEXT

    with open(file_path, "rb") as f:
        content = f.read()

    if mime_type == PDF_MIME:
        text = extract_text_from_pdf(content)
        if not text:
            return SCANNED_PDF_TEXT
    else:
        text = extract_text_from_txt(content)

    return text[:max_chars]
