"""
Request / response envelopes for the reimbursement review API.
"""
from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field

from app.schemas.reimbursement import (
    AuditLogEntry,
    AuditNote,
    Department,
    Receipt,
    ReimbursementStatus,
    ReimbursementView,
)


class ReimbursementFilters(BaseModel):
    """Everything that decides which claims the review list shows, and in what order."""
    status: list[ReimbursementStatus] = Field(default_factory=list)
    department: list[Department] = Field(default_factory=list)
    date_range: Literal["week", "month", "year", "all"] = "all"
    sort_by: Literal["date_of_purchase", "total_amount", "status"] = "date_of_purchase"
    sort_order: Literal["asc", "desc"] = "desc"
    hide_paid: bool = True
    hide_rejected: bool = True
    search: str = ""

    @property
    def is_searching(self) -> bool:
        return bool(self.search.strip())


class StatusChangeRequest(BaseModel):
    status: ReimbursementStatus


class RejectRequest(BaseModel):
    reason: str


class NoteCreate(BaseModel):
    note: str
    is_private: bool = True


class JournalPage(BaseModel):
    items: list[Union[AuditLogEntry, AuditNote]] = Field(default_factory=list)
    page: int = 1
    page_size: int
    total: int = 0
    total_pages: int = 0


class WorkflowOutcome(BaseModel):
    """Result of a workflow operation: the re-fetched claim plus any partial failures."""
    view: ReimbursementView
    warnings: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class ReceiptDetail(BaseModel):
    receipt: Receipt
    total: float
    file_url: Optional[str] = None
