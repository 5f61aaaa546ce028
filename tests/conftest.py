"""Shared fixtures: in-memory repository, mocked S3 client, fake SMTP."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import aiosmtplib
import pytest

from attachments import Attachment
from repository import InMemoryRegistrationRepository
from storage import ObjectStoreGateway

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\n%%EOF\n"


def make_pdf(filename="id_card.pdf", size=None, content_type="application/pdf"):
    return Attachment(
        content=PDF_BYTES,
        filename=filename,
        content_type=content_type,
        size=len(PDF_BYTES) if size is None else size,
    )


@pytest.fixture
def pdf():
    return make_pdf


@pytest.fixture
def repository():
    return InMemoryRegistrationRepository()


@pytest.fixture
def s3_client():
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://test-bucket.s3.amazonaws.com/signed?X-Amz-Signature=abc"
    client.head_object.return_value = {
        "ContentType": "application/pdf",
        "ContentLength": len(PDF_BYTES),
        "LastModified": datetime(2025, 9, 1, 10, 30, tzinfo=timezone.utc),
        "Metadata": {"originalName": "id_card.pdf"},
    }
    return client


@pytest.fixture
def store(s3_client):
    return ObjectStoreGateway(s3_client, "test-bucket", "ap-south-1")


@pytest.fixture
def valid_form():
    return {
        "name": "  Asha Rao ",
        "email": "Asha.Rao@College.edu",
        "phone": "9876543210",
        "college": "City College",
        "department": "Political Science",
        "year": "2",
        "munsParticipated": "4",
        "munsWithAwards": "1",
        "organizingExperience": "yes",
        "munsChaired": "0",
        "committees": json.dumps(["UNSC", "DISEC"]),
        "positions": json.dumps(["Director"]),
    }


@pytest.fixture
def registration_data():
    """Build a complete stored registration; later calls are submitted later."""
    counter = {"n": 0}
    base = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)

    def build(**overrides):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "name": f"Applicant {n}",
            "email": f"applicant{n}@college.edu",
            "phone": f"90000000{n:02d}",
            "college": "City College",
            "department": "Economics",
            "year": "1",
            "munsParticipated": 2,
            "munsWithAwards": 0,
            "munsChaired": 0,
            "organizingExperience": "no",
            "committees": ["UNSC"],
            "positions": ["Director"],
            "status": "submitted",
            "submittedAt": base + timedelta(minutes=n),
            "files": {
                "idCard": {
                    "key": f"registrations/r{n}/idCard/1700000000000-abcd{n:04d}-id.pdf",
                    "url": f"https://test-bucket.s3.ap-south-1.amazonaws.com/registrations/r{n}/idCard/id.pdf",
                    "originalName": "id.pdf",
                    "size": 1024,
                    "mimeType": "application/pdf",
                    "uploadedAt": (base + timedelta(minutes=n)).isoformat(),
                },
            },
        }
        data.update(overrides)
        return data

    return build


class FakeTransport:
    def __init__(self, recorder, settings):
        self.recorder = recorder
        self.settings = settings
        self.closed = False

    @property
    def sender(self):
        return "portal@college.edu"

    async def verify(self):
        self.recorder.connections += 1
        if self.recorder.verify_error is not None:
            raise self.recorder.verify_error

    async def send(self, message):
        to = str(message["To"])
        self.recorder.attempts.append(to)
        if to in self.recorder.fail_for:
            raise aiosmtplib.SMTPException(f"Mailbox unavailable: {to}")
        self.recorder.sent.append(message)

    async def close(self):
        self.closed = True


class FakeSmtp:
    """Transport factory that records every message instead of sending it."""

    def __init__(self):
        self.sent = []
        self.attempts = []
        self.connections = 0
        self.verify_error = None
        self.fail_for = set()

    def __call__(self, settings):
        return FakeTransport(self, settings)


@pytest.fixture
def smtp():
    return FakeSmtp()


@pytest.fixture
def smtp_providers():
    return {
        "gmail": {"host": "smtp.gmail.com", "port": 587, "username": "portal@college.edu", "password": "secret"},
        "outlook": {"host": "smtp.office365.com", "port": 587, "username": "portal@college.edu", "password": "secret"},
    }
