import fitz
import pytest

from app.utils.file_handler import (
    IMAGE_REPORT_TEXT,
    SCANNED_PDF_TEXT,
    build_stored_filename,
    detect_mime_type,
    extract_text_from_pdf,
    extract_text_from_txt,
    load_report_text,
    normalize_text,
    resolve_upload_path,
)


def _pdf_bytes(text=None) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class TestTextExtraction:

    def test_normalize_collapses_whitespace(self):
        assert normalize_text("a   b\r\n\n\n\nc\x00") == "a b\n\nc"

    def test_txt_plain(self):
        assert extract_text_from_txt(b"Hemoglobin  9.1 g/dL\r\n") == "Hemoglobin 9.1 g/dL"

    def test_txt_undecodable_bytes_do_not_raise(self):
        assert isinstance(extract_text_from_txt(b"Glucose \xff\xfe\xfa 132"), str)

    def test_pdf_with_text_layer(self):
        assert "Glucose 132" in extract_text_from_pdf(_pdf_bytes("Glucose 132 mg/dL"))

    def test_pdf_without_text_layer(self):
        assert extract_text_from_pdf(_pdf_bytes()) == ""

    def test_corrupt_pdf_raises(self):
        with pytest.raises(ValueError):
            extract_text_from_pdf(b"definitely not a pdf")


class TestPaths:

    @pytest.mark.parametrize(
        "name, mime",
        [("a.PDF", "application/pdf"), ("b.txt", "text/plain"), ("c.jpg", "image/jpeg"), ("d.docx", None)],
    )
    def test_detect_mime_type(self, name, mime):
        assert detect_mime_type(name) == mime

    def test_stored_filename_keeps_extension(self):
        name = build_stored_filename("My Report.PDF")
        assert name.endswith(".pdf")
        assert " " not in name

    def test_resolve_upload_path(self, tmp_path):
        assert resolve_upload_path("/uploads/abc.pdf", str(tmp_path)) == str(tmp_path / "abc.pdf")
        assert resolve_upload_path("", str(tmp_path)) is None


class TestLoadReportText:

    def test_missing_file(self, tmp_path):
        assert load_report_text(str(tmp_path / "nope.txt")) is None
        assert load_report_text(None) is None

    def test_txt_is_truncated(self, tmp_path):
        path = tmp_path / "r.txt"
        path.write_text("abcdefghij")
        assert load_report_text(str(path), max_chars=4) == "abcd"

    def test_image_placeholder(self, tmp_path):
        path = tmp_path / "x.png"
        path.write_bytes(b"\x89PNG")
        assert load_report_text(str(path)) == IMAGE_REPORT_TEXT

    def test_scanned_pdf_placeholder(self, tmp_path):
        path = tmp_path / "scan.pdf"
        path.write_bytes(_pdf_bytes())
        assert load_report_text(str(path)) == SCANNED_PDF_TEXT
