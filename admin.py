"""
Admin queries over the registration list.

Filtering and pagination run in memory over a fresh read of every record.
Bulk actions treat each id independently and report a tally instead of
stopping at the first failure.
"""
import csv
import io
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from errors import NotFoundError, StorageError, UpstreamError, ValidationError
from repository import RegistrationRepository, is_complete
from storage import ObjectStoreGateway
from validation import validate_update

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("delete", "update")


@dataclass
class RegistrationFilters:
    search: Optional[str] = None
    committee: Optional[str] = None
    position: Optional[str] = None
    year: Optional[str] = None
    status: Optional[str] = None

    def matches(self, record: dict) -> bool:
        if self.search:
            term = self.search.lower()
            haystack = [str(record.get(f) or "").lower() for f in ("name", "email", "phone", "college")]
            if not any(term in value for value in haystack):
                return False
        if self.committee and self.committee not in record.get("committees", []):
            return False
        if self.position and self.position not in record.get("positions", []):
            return False
        if self.year and str(record.get("year", "")) != self.year:
            return False
        if self.status and record.get("status") != self.status:
            return False
        return True


def filter_registrations(records: List[dict], filters: RegistrationFilters) -> List[dict]:
    return [r for r in records if is_complete(r) and filters.matches(r)]


def paginate(records: List[dict], page: int = 1, limit: int = 50) -> Tuple[List[dict], dict]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive integers")
    start = (page - 1) * limit
    end = start + limit
    total = len(records)
    return records[start:end], {
        "currentPage": page,
        "totalPages": math.ceil(total / limit),
        "totalRecords": total,
        "hasNext": end < total,
        "hasPrev": start > 0,
    }


async def list_registrations(repository: RegistrationRepository, filters: RegistrationFilters,
                             page: int = 1, limit: int = 50) -> Tuple[List[dict], dict]:
    records = await repository.list("submittedAt", "desc")
    return paginate(filter_registrations(records, filters), page, limit)


async def release_attachments(store: ObjectStoreGateway, record: dict) -> None:
    """Best-effort delete of a record's stored files."""
    keys = store.attachment_keys(record.get("files"))
    if not keys:
        return
    try:
        await store.delete_many(keys)
    except StorageError as e:
        logger.error(f"File deletion for registration {record.get('id')} failed: {e}")


async def delete_registration(repository: RegistrationRepository, store: ObjectStoreGateway,
                              registration_id: str) -> None:
    record = await repository.get(registration_id)
    if record is None:
        raise NotFoundError(f"Registration {registration_id} not found")
    await release_attachments(store, record)
    if not await repository.delete(registration_id):
        raise NotFoundError(f"Registration {registration_id} not found")
    logger.info(f"Registration {registration_id} deleted")


async def update_registration(repository: RegistrationRepository, registration_id: str, patch: dict) -> None:
    if not await repository.update(registration_id, validate_update(patch)):
        raise NotFoundError(f"Registration {registration_id} not found")


async def bulk_action(repository: RegistrationRepository, store: ObjectStoreGateway,
                      action: str, registration_ids: List[str], data: Optional[dict] = None) -> Dict[str, Any]:
    """
    Apply `action` to every id.

    Returns:
        {"success": n, "failed": n, "errors": [per-id messages]}
    """
    if action not in BULK_ACTIONS:
        raise ValidationError(f"Unknown action: {action}")
    changes = validate_update(data) if data else None

    results = {"success": 0, "failed": 0, "errors": []}
    for registration_id in registration_ids:
        try:
            if action == "delete":
                await delete_registration(repository, store, registration_id)
            elif changes is None:
                raise ValidationError(f"No update data provided for {registration_id}")
            else:
                await update_registration(repository, registration_id, changes)
            results["success"] += 1
        except (NotFoundError, ValidationError) as e:
            results["failed"] += 1
            results["errors"].append(e.message)
        except UpstreamError as e:
            logger.error(f"Bulk {action} failed for {registration_id}: {e}")
            results["failed"] += 1
            results["errors"].append(f"Error processing {registration_id}: {e.message}")

    logger.info(f"Bulk {action}: {results['success']} succeeded, {results['failed']} failed")
    return results


EXPORT_COLUMNS = [
    ("ID", "id"),
    ("Name", "name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("College", "college"),
    ("Department", "department"),
    ("Year", "year"),
    ("MUNs Participated", "munsParticipated"),
    ("MUNs with Awards", "munsWithAwards"),
    ("Organizing Experience", "organizingExperience"),
    ("MUNs Chaired", "munsChaired"),
    ("Committee Preferences", "committees"),
    ("Position Preferences", "positions"),
    ("Status", "status"),
    ("Submitted At", "submittedAt"),
    ("Files Uploaded", "files"),
]


def export_rows(records: List[dict]) -> List[dict]:
    rows = []
    for record in records:
        row = {}
        for header, field in EXPORT_COLUMNS:
            value = record.get(field)
            if field == "files":
                value = ", ".join(value) if value else "None"
            elif isinstance(value, list):
                value = ", ".join(value)
            row[header] = value
        rows.append(row)
    return rows


def to_csv(rows: List[dict]) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(rows[0]), lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
