"""
Database and request schemas for the Registration Portal

`Registration` mirrors a document in the `registrations` collection. The
request models validate JSON bodies of the admin endpoints; the multipart
submission form is validated by hand in `validation.py` so that error
messages can name the offending field.
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Dict, List, Literal, Optional, Union
from datetime import datetime

COMMITTEES = ["UNSC", "UNODC", "LOK SABHA", "CCC", "IPC", "DISEC"]
POSITIONS = ["Chairperson", "Vice-Chairperson", "Director"]
YEARS = ["1", "2", "3", "4", "5"]
ORGANIZING_EXPERIENCE = ["yes", "no"]

DEFAULT_STATUS = "submitted"


class UploadedFile(BaseModel):
    key: str = Field(..., description="Object store key")
    url: str = Field(..., description="Public URL of the stored object")
    originalName: str = Field(..., description="File name as uploaded by the applicant")
    size: int = Field(..., ge=0, description="Size in bytes")
    mimeType: str = Field(..., description="Declared MIME type")
    uploadedAt: str = Field(..., description="ISO-8601 upload timestamp")


class Registration(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., description="Lower-cased applicant email, checked against EMAIL_PATTERN")
    phone: str = Field(..., min_length=1)
    college: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    year: str = Field(..., description="Year of study, one of YEARS")

    munsParticipated: int = Field(..., ge=0)
    munsWithAwards: int = Field(..., ge=0)
    munsChaired: int = Field(..., ge=0)
    organizingExperience: str = Field(..., description="yes|no")

    committees: List[str] = Field(..., min_length=1)
    positions: List[str] = Field(..., min_length=1)

    files: Dict[str, UploadedFile] = Field(default_factory=dict, description="Stored attachments by field name")
    submittedAt: datetime = Field(..., description="Server-side submission time (UTC)")
    status: str = Field(DEFAULT_STATUS, description="Free-text workflow tag")
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None


class CheckEmailRequest(BaseModel):
    email: Optional[str] = None


class BulkActionRequest(BaseModel):
    action: Literal["delete", "update"]
    registrationIds: List[str]
    data: Optional[dict] = None


class SendMailRequest(BaseModel):
    recipients: Union[List[str], str]
    subject: str = ""
    message: str = ""
    template: str = "custom"
    smtpProvider: str = "gmail"
    cc: List[EmailStr] = Field(default_factory=list)
    bcc: List[EmailStr] = Field(default_factory=list)


class SendWelcomeRequest(BaseModel):
    registrationIds: List[str] = Field(default_factory=list)


class SmtpTestRequest(BaseModel):
    provider: str = "gmail"
    testEmail: Optional[EmailStr] = None
