"""
Entity model for the reimbursement review workflow.

All workflow stages produce and consume these Pydantic v2 models. Records coming
from the store are plain dicts; ``from_record`` builds the typed entity, decoding the
serialized blobs defensively (see ``app.workflow.codec``).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ReimbursementStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    PAID = "paid"


class Department(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    PROJECTS = "projects"
    EVENTS = "events"
    OTHER = "other"


LogAction = Literal["status_change", "receipt_audit", "note_added"]


def _department(value: Any, record_id: str) -> Department:
    """Legacy departments outside the current set are read as ``other``."""
    if not value:
        return Department.OTHER
    try:
        return Department(value)
    except ValueError:
        logger.warning("Reimbursement %s has unknown department %r; reading it as other", record_id, value)
        return Department.OTHER


def _as_utc(value: datetime) -> datetime:
    """Journal timestamps without an offset are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

class ItemizedExpense(BaseModel):
    """One line item of a receipt."""
    description: str = ""
    category: str = ""
    amount: float = Field(default=0.0, ge=0)


class AuditLogEntry(BaseModel):
    """System-authored journal entry.

    Only the payload fields relevant to ``action`` are set; the rest stay ``None``
    and are dropped when the entry is serialized.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    action: LogAction
    auditor_id: str
    timestamp: datetime

    # status_change
    from_status: Optional[str] = Field(default=None, alias="from")
    to_status: Optional[str] = Field(default=None, alias="to")

    # receipt_audit
    receipt_id: Optional[str] = None
    receipt_name: Optional[str] = None
    receipt_date: Optional[str] = None
    receipt_amount: Optional[float] = None

    # note_added
    note_preview: Optional[str] = None
    is_private: Optional[bool] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AuditNote(BaseModel):
    """Human-authored journal entry."""
    model_config = ConfigDict(frozen=True)

    note: str
    auditor_id: str
    timestamp: datetime
    is_private: bool = False

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class Receipt(BaseModel):
    id: str
    file: str = ""
    created_by: Optional[str] = None
    itemized_expenses: list[ItemizedExpense] = Field(default_factory=list)
    tax: float = 0.0
    date: Optional[str] = None
    location_name: str = ""
    location_address: str = ""
    notes: str = ""
    audited_by: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Receipt":
        from app.workflow.codec import decode_expenses

        return cls(
            id=record["id"],
            file=record.get("file") or "",
            created_by=record.get("created_by"),
            itemized_expenses=decode_expenses(record.get("itemized_expenses")),
            tax=record.get("tax") or 0.0,
            date=record.get("date"),
            location_name=record.get("location_name") or "",
            location_address=record.get("location_address") or "",
            notes=record.get("notes") or "",
            audited_by=list(record.get("audited_by") or []),
        )

    @property
    def total(self) -> float:
        from app.workflow.ledger import compute_total

        return compute_total(self)


class Reimbursement(BaseModel):
    id: str
    title: str
    department: Department = Department.OTHER
    date_of_purchase: str
    payment_method: str = ""
    total_amount: float = 0.0
    additional_info: str = ""
    submitted_by: str
    status: ReimbursementStatus = ReimbursementStatus.SUBMITTED
    receipts: list[str] = Field(default_factory=list)
    audit_logs: list[AuditLogEntry] = Field(default_factory=list)
    audit_notes: list[AuditNote] = Field(default_factory=list)
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Reimbursement":
        from app.workflow.codec import decode_logs, decode_notes

        return cls(
            id=record["id"],
            title=record.get("title") or "",
            department=_department(record.get("department"), record["id"]),
            date_of_purchase=record.get("date_of_purchase") or "",
            payment_method=record.get("payment_method") or "",
            total_amount=record.get("total_amount") or 0.0,
            additional_info=record.get("additional_info") or "",
            submitted_by=record["submitted_by"],
            status=record.get("status") or ReimbursementStatus.SUBMITTED,
            receipts=list(record.get("receipts") or []),
            audit_logs=decode_logs(record.get("audit_logs")),
            audit_notes=decode_notes(record.get("audit_notes")),
            created=record.get("created"),
            updated=record.get("updated"),
        )


class ReimbursementView(BaseModel):
    """A reimbursement re-fetched together with everything needed to display it."""
    reimbursement: Reimbursement
    receipts: list[Receipt] = Field(default_factory=list)
    submitter_name: str = ""
    auditor_names: dict[str, str] = Field(default_factory=dict)

    def receipt_map(self) -> dict[str, Receipt]:
        return {r.id: r for r in self.receipts}
