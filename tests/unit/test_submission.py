"""Unit tests for the submission workflow."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError

from errors import DatabaseError, StorageError, ValidationError
from submission import SubmissionWorkflow, registration_folder

MB = 1024 * 1024


def failing_put(suffix):
    def put_object(**kwargs):
        if suffix in kwargs["Key"]:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "S3 unavailable"}}, "PutObject")
    return put_object


@pytest.fixture
def workflow(repository, store):
    return SubmissionWorkflow(repository, store)


class TestSubmit:
    """Test SubmissionWorkflow.submit."""

    def test_submit_with_required_attachment(self, workflow, repository, s3_client, valid_form, pdf):
        result = asyncio.run(workflow.submit(
            valid_form, {"idCard": [pdf()]}, ip_address="10.0.0.7", user_agent="pytest",
        ))

        record = asyncio.run(repository.get(result["registrationId"]))
        assert record["email"] == "asha.rao@college.edu"
        assert record["status"] == "submitted"
        assert record["ipAddress"] == "10.0.0.7"
        assert record["userAgent"] == "pytest"
        assert list(record["files"]) == ["idCard"]
        assert record["files"]["idCard"]["key"].startswith(
            registration_folder(result["registrationId"], "idCard") + "/"
        )
        assert record["submittedAt"] == result["submittedAt"]
        assert s3_client.put_object.call_count == 1

    def test_any_address_matching_the_email_pattern_is_accepted(self, workflow, repository, valid_form, pdf):
        valid_form["email"] = "Asha@College.test"

        result = asyncio.run(workflow.submit(valid_form, {"idCard": [pdf()]}))

        record = asyncio.run(repository.get(result["registrationId"]))
        assert record["email"] == "asha@college.test"

    def test_submit_with_all_attachments(self, workflow, repository, s3_client, valid_form, pdf):
        files = {
            "idCard": [pdf("id.pdf")],
            "munCertificates": [pdf("certs.pdf")],
            "chairingResume": [pdf("resume.pdf", size=int(2.5 * MB))],
        }

        result = asyncio.run(workflow.submit(valid_form, files))

        record = asyncio.run(repository.get(result["registrationId"]))
        assert set(record["files"]) == {"idCard", "munCertificates", "chairingResume"}
        assert record["files"]["chairingResume"]["originalName"] == "resume.pdf"
        assert s3_client.put_object.call_count == 3

    def test_missing_id_card_writes_nothing(self, workflow, repository, s3_client, valid_form):
        with pytest.raises(ValidationError, match="idCard is required"):
            asyncio.run(workflow.submit(valid_form, {}))

        assert asyncio.run(repository.list()) == []
        s3_client.put_object.assert_not_called()

    def test_oversized_resume_is_rejected(self, workflow, repository, valid_form, pdf):
        files = {"idCard": [pdf()], "chairingResume": [pdf("resume.pdf", size=int(3.5 * MB))]}

        with pytest.raises(ValidationError, match="chairingResume must be less than 3MB"):
            asyncio.run(workflow.submit(valid_form, files))

        assert asyncio.run(repository.list()) == []

    def test_non_pdf_is_rejected(self, workflow, repository, valid_form, pdf):
        files = {"idCard": [pdf("id.png", content_type="image/png")]}

        with pytest.raises(ValidationError, match="idCard must be a PDF file"):
            asyncio.run(workflow.submit(valid_form, files))

        assert asyncio.run(repository.list()) == []

    def test_form_errors_come_before_file_errors(self, workflow, valid_form):
        valid_form["committees"] = "[]"
        with pytest.raises(ValidationError, match="committee"):
            asyncio.run(workflow.submit(valid_form, {}))

    def test_required_upload_failure_removes_everything(self, workflow, repository, s3_client, valid_form, pdf):
        s3_client.put_object.side_effect = failing_put("/idCard/")
        files = {"idCard": [pdf()], "munCertificates": [pdf("certs.pdf")]}

        with pytest.raises(StorageError) as exc_info:
            asyncio.run(workflow.submit(valid_form, files))

        assert exc_info.value.message == "Failed to upload idCard. Please try again."
        assert asyncio.run(repository.list()) == []
        deleted = [c.kwargs["Key"] for c in s3_client.delete_object.call_args_list]
        assert len(deleted) == 1
        assert "/munCertificates/" in deleted[0]

    def test_optional_upload_failure_is_tolerated(self, workflow, repository, s3_client, valid_form, pdf):
        s3_client.put_object.side_effect = failing_put("/chairingResume/")
        files = {"idCard": [pdf()], "chairingResume": [pdf("resume.pdf")]}

        result = asyncio.run(workflow.submit(valid_form, files))

        record = asyncio.run(repository.get(result["registrationId"]))
        assert list(record["files"]) == ["idCard"]
        s3_client.delete_object.assert_not_called()

    def test_failed_patch_removes_record_and_files(self, workflow, repository, s3_client, valid_form, pdf):
        repository.update = AsyncMock(side_effect=DatabaseError("Failed to update registration", detail="timeout"))

        with pytest.raises(DatabaseError):
            asyncio.run(workflow.submit(valid_form, {"idCard": [pdf()]}))

        assert asyncio.run(repository.list()) == []
        assert s3_client.delete_object.call_count == 1

    def test_vanished_record_during_patch(self, workflow, repository, s3_client, valid_form, pdf):
        repository.update = AsyncMock(return_value=False)

        with pytest.raises(DatabaseError, match="Failed to save uploaded files"):
            asyncio.run(workflow.submit(valid_form, {"idCard": [pdf()]}))

        assert s3_client.delete_object.call_count == 1

    def test_cleanup_failure_does_not_mask_original_error(self, workflow, repository, s3_client, valid_form, pdf):
        s3_client.put_object.side_effect = failing_put("/idCard/")
        s3_client.delete_object.side_effect = ClientError({"Error": {"Code": "X", "Message": "nope"}}, "DeleteObject")
        files = {"idCard": [pdf()], "munCertificates": [pdf("certs.pdf")]}

        with pytest.raises(StorageError, match="idCard"):
            asyncio.run(workflow.submit(valid_form, files))

        assert asyncio.run(repository.list()) == []

    def test_database_unavailable_on_create(self, workflow, repository, s3_client, valid_form, pdf):
        repository.create = AsyncMock(side_effect=DatabaseError("Failed to save registration", detail="down"))

        with pytest.raises(DatabaseError):
            asyncio.run(workflow.submit(valid_form, {"idCard": [pdf()]}))

        s3_client.put_object.assert_not_called()


class TestCheckEmail:
    """Test SubmissionWorkflow.check_email."""

    def test_existing_email_is_reported(self, workflow, repository, registration_data):
        asyncio.run(repository.create(registration_data(email="taken@college.edu")))

        assert asyncio.run(workflow.check_email(" Taken@College.edu ")) is True
        assert asyncio.run(workflow.check_email("free@college.edu")) is False

    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_email_is_required(self, workflow, email):
        with pytest.raises(ValidationError, match="Email is required"):
            asyncio.run(workflow.check_email(email))
