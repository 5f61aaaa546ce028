"""
Applicant submission workflow.

validate -> create stub record -> upload attachments -> attach file
metadata. The stub exists before any upload so object keys can live under
the registration id; every failure after that point removes what was
written before the error is raised.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Sequence

from attachments import ATTACHMENT_LIMITS, REQUIRED_ATTACHMENTS, Attachment, validate_attachment
from errors import DatabaseError, StorageError, ValidationError
from repository import RegistrationRepository
from schemas import DEFAULT_STATUS, Registration
from storage import ObjectStoreGateway
from validation import validate_registration_form

logger = logging.getLogger(__name__)


def registration_folder(registration_id: str, field_name: str) -> str:
    return f"registrations/{registration_id}/{field_name}"


class SubmissionWorkflow:
    def __init__(self, repository: RegistrationRepository, store: ObjectStoreGateway):
        self.repository = repository
        self.store = store

    async def submit(
        self,
        form: Mapping[str, str],
        files: Mapping[str, Sequence[Attachment]],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Accept one application.

        Args:
            form: Scalar form fields
            files: Attachments keyed by field name
            ip_address: Submitter address, when known
            user_agent: Submitter user agent, when known

        Returns:
            {"registrationId", "submittedAt"}

        Raises:
            ValidationError: bad input; nothing was written
            StorageError: the required attachment could not be stored
            DatabaseError: the record could not be created or patched
        """
        fields = validate_registration_form(form)

        file_errors = []
        for field_name in ATTACHMENT_LIMITS:
            file_errors.extend(validate_attachment(files.get(field_name), field_name))
        if file_errors:
            raise ValidationError(", ".join(file_errors))

        submitted_at = datetime.now(timezone.utc)
        registration = Registration(
            **fields,
            submittedAt=submitted_at,
            status=DEFAULT_STATUS,
            ipAddress=ip_address,
            userAgent=user_agent,
        )

        registration_id = await self.repository.create(registration)
        uploaded = await self._upload_attachments(registration_id, files)

        try:
            if not await self.repository.update(registration_id, {"files": uploaded}):
                raise DatabaseError(
                    "Failed to save uploaded files",
                    detail=f"registration {registration_id} vanished before its files were attached",
                )
        except DatabaseError:
            await self._discard(registration_id, uploaded)
            raise

        logger.info(f"New registration submitted: {fields['name']} ({fields['email']}) as {registration_id}")
        return {"registrationId": registration_id, "submittedAt": submitted_at.isoformat()}

    async def _upload_attachments(self, registration_id: str, files: Mapping[str, Sequence[Attachment]]) -> Dict[str, dict]:
        provided = [(name, files[name][0]) for name in ATTACHMENT_LIMITS if files.get(name)]
        results = await asyncio.gather(
            *(self.store.upload(attachment, registration_folder(registration_id, name)) for name, attachment in provided),
            return_exceptions=True,
        )

        uploaded, failures = {}, {}
        for (name, _), result in zip(provided, results):
            if isinstance(result, BaseException):
                failures[name] = result
            else:
                uploaded[name] = result

        unexpected = [e for e in failures.values() if not isinstance(e, StorageError)]
        failed_required = [name for name in failures if name in REQUIRED_ATTACHMENTS]
        if unexpected or failed_required:
            await self._discard(registration_id, uploaded)
            if unexpected:
                raise unexpected[0]
            raise StorageError(
                f"Failed to upload {', '.join(failed_required)}. Please try again.",
                detail="; ".join(str(failures[name]) for name in failed_required),
            )

        for name, error in failures.items():
            logger.warning(f"Optional attachment {name} for registration {registration_id} was not stored: {error}")
        return uploaded

    async def _discard(self, registration_id: str, uploaded: Dict[str, dict]) -> None:
        keys = [f["key"] for f in uploaded.values()]
        if keys:
            try:
                await self.store.delete_many(keys)
            except StorageError as e:
                logger.error(f"Cleanup of files for registration {registration_id} failed: {e}")
        try:
            await self.repository.delete(registration_id)
        except DatabaseError as e:
            logger.error(f"Cleanup of registration {registration_id} failed: {e}")

    async def check_email(self, email: Optional[str]) -> bool:
        """Advisory duplicate check; submitting again is still allowed."""
        if not email or not email.strip():
            raise ValidationError("Email is required")
        return bool(await self.repository.query("email", email.strip().lower()))
