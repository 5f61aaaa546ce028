"""Validation of the registration form and of admin edits."""
import json
import re
from typing import Any, List, Mapping, Optional, Tuple

from attachments import ATTACHMENT_LIMITS, OPTIONAL_ATTACHMENTS, PDF_MIME_TYPE, REQUIRED_ATTACHMENTS, format_size
from errors import ValidationError
from schemas import COMMITTEES, ORGANIZING_EXPERIENCE, POSITIONS, YEARS

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = [
    "name", "email", "phone", "college", "department", "year",
    "munsParticipated", "munsWithAwards", "organizingExperience", "munsChaired",
    "committees", "positions",
]
TEXT_FIELDS = ["name", "email", "phone", "college", "department", "year", "organizingExperience"]
NUMERIC_FIELDS = ["munsParticipated", "munsWithAwards", "munsChaired"]

# Never writable through the admin update path
PROTECTED_FIELDS = ("id", "_id", "submittedAt", "createdAt", "updatedAt", "files")


def is_valid_email(email: Any) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(email.strip()))


def parse_non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a non-negative number")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a non-negative number")
    if number < 0:
        raise ValidationError(f"{field} must be a non-negative number")
    return number


def _parse_choices(raw: Any) -> Optional[list]:
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, list) else None


def check_choices(values: list, options: List[str], label: str) -> List[str]:
    if not values:
        raise ValidationError(f"Please select at least one {label} preference")
    unknown = [str(v) for v in values if v not in options]
    if unknown:
        raise ValidationError(f"Invalid {label} selection: {', '.join(unknown)}")
    return list(values)


def parse_preferences(raw_committees: Any, raw_positions: Any) -> Tuple[List[str], List[str]]:
    committees = _parse_choices(raw_committees)
    positions = _parse_choices(raw_positions)
    if committees is None or positions is None:
        raise ValidationError("Invalid committees or positions format")

    return check_choices(committees, COMMITTEES, "committee"), check_choices(positions, POSITIONS, "position")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_registration_form(form: Mapping[str, Any]) -> dict:
    """
    Validate the scalar and preference fields of a submission.

    Args:
        form: Raw form values (strings; committees/positions JSON encoded)

    Returns:
        Cleaned fields ready to be stored

    Raises:
        ValidationError: naming every missing field, or the first
            malformed one
    """
    missing = [field for field in REQUIRED_FIELDS if not _text(form.get(field))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    email = _text(form["email"]).lower()
    if not is_valid_email(email):
        raise ValidationError("Please provide a valid email address")

    committees, positions = parse_preferences(form["committees"], form["positions"])

    year = _text(form["year"])
    if year not in YEARS:
        raise ValidationError(f"year must be one of: {', '.join(YEARS)}")

    organizing = _text(form["organizingExperience"]).lower()
    if organizing not in ORGANIZING_EXPERIENCE:
        raise ValidationError("organizingExperience must be 'yes' or 'no'")

    cleaned = {field: _text(form[field]) for field in TEXT_FIELDS}
    cleaned.update(email=email, year=year, organizingExperience=organizing)
    for field in NUMERIC_FIELDS:
        cleaned[field] = parse_non_negative_int(form[field], field)
    cleaned["committees"] = committees
    cleaned["positions"] = positions
    return cleaned


def validate_update(patch: Mapping[str, Any]) -> dict:
    """Clean an admin edit; unknown keys pass through untouched."""
    if not isinstance(patch, Mapping):
        raise ValidationError("Update data must be an object")
    changes = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}

    if "email" in changes:
        if not is_valid_email(changes["email"]):
            raise ValidationError("Invalid email format")
        changes["email"] = changes["email"].strip().lower()

    for field in NUMERIC_FIELDS:
        if field in changes:
            changes[field] = parse_non_negative_int(changes[field], field)

    if "year" in changes:
        year = str(changes["year"]).strip()
        if year not in YEARS:
            raise ValidationError(f"year must be one of: {', '.join(YEARS)}")
        changes["year"] = year

    for field, options, label in (("committees", COMMITTEES, "committee"), ("positions", POSITIONS, "position")):
        if field in changes:
            values = _parse_choices(changes[field])
            if values is None:
                raise ValidationError(f"Invalid {field} format")
            changes[field] = check_choices(values, options, label)

    return changes


def validation_rules() -> dict:
    return {
        "requiredFields": REQUIRED_FIELDS + list(REQUIRED_ATTACHMENTS),
        "fileUpload": {
            "maxSize": {field: format_size(limit) for field, limit in ATTACHMENT_LIMITS.items()},
            "allowedTypes": [PDF_MIME_TYPE],
            "required": list(REQUIRED_ATTACHMENTS),
            "optional": list(OPTIONAL_ATTACHMENTS),
        },
        "committees": COMMITTEES,
        "positions": POSITIONS,
        "yearOptions": YEARS,
    }
