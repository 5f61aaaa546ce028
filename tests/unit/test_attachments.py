"""Unit tests for attachment validation."""
from attachments import MB, format_size, validate_attachment


class TestValidateAttachment:
    """Test validate_attachment function."""

    def test_valid_id_card(self, pdf):
        assert validate_attachment([pdf()], "idCard") == []

    def test_missing_required_attachment(self):
        assert validate_attachment([], "idCard") == ["idCard is required"]
        assert validate_attachment(None, "idCard") == ["idCard is required"]

    def test_missing_optional_attachment_is_valid(self):
        assert validate_attachment([], "munCertificates") == []
        assert validate_attachment(None, "chairingResume") == []

    def test_wrong_mime_type_with_pdf_extension(self, pdf):
        errors = validate_attachment([pdf("scan.pdf", content_type="image/png")], "idCard")
        assert errors == ["idCard must be a PDF file"]

    def test_wrong_extension_with_pdf_mime_type(self, pdf):
        errors = validate_attachment([pdf("scan.docx")], "idCard")
        assert errors == ["idCard must have a .pdf extension"]

    def test_extension_check_is_case_insensitive(self, pdf):
        assert validate_attachment([pdf("SCAN.PDF")], "idCard") == []

    def test_all_violations_reported_together(self, pdf):
        errors = validate_attachment([pdf("photo.jpg", size=5 * MB, content_type="image/jpeg")], "idCard")
        assert errors == [
            "idCard must be a PDF file",
            "idCard must have a .pdf extension",
            "idCard must be less than 2MB",
        ]

    def test_chairing_resume_over_ceiling(self, pdf):
        errors = validate_attachment([pdf("resume.pdf", size=int(3.5 * MB))], "chairingResume")
        assert errors == ["chairingResume must be less than 3MB"]

    def test_chairing_resume_has_larger_ceiling(self, pdf):
        assert validate_attachment([pdf("resume.pdf", size=int(2.5 * MB))], "chairingResume") == []
        assert validate_attachment([pdf("certs.pdf", size=int(2.5 * MB))], "munCertificates") == [
            "munCertificates must be less than 2MB"
        ]

    def test_size_at_ceiling_is_allowed(self, pdf):
        assert validate_attachment([pdf(size=2 * MB)], "idCard") == []

    def test_more_than_one_file(self, pdf):
        errors = validate_attachment([pdf("a.pdf"), pdf("b.pdf")], "idCard")
        assert errors == ["idCard must be a single file"]


class TestFormatSize:
    """Test format_size function."""

    def test_whole_megabytes(self):
        assert format_size(2 * MB) == "2MB"
        assert format_size(3 * MB) == "3MB"

    def test_fractional_megabytes(self):
        assert format_size(int(1.5 * MB)) == "1.5MB"
