"""
Reimbursement review API.

GET  /api/reimbursements                                   — filtered / searched list
GET  /api/reimbursements/{id}                              — one claim, re-fetched
GET  /api/reimbursements/{id}/logs                         — audit log page
GET  /api/reimbursements/{id}/notes                        — audit note page
POST /api/reimbursements/{id}/status                       — status transition
POST /api/reimbursements/{id}/reject                       — reject with reason
POST /api/reimbursements/{id}/notes                        — add an audit note
POST /api/reimbursements/{id}/receipts/{receipt_id}/audit  — sign off a receipt
GET  /api/reimbursements/{id}/receipts/{receipt_id}        — receipt with total + file URL
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.schemas import (
    Department,
    JournalPage,
    NoteCreate,
    Receipt,
    ReceiptDetail,
    ReimbursementFilters,
    ReimbursementStatus,
    ReimbursementView,
    RejectRequest,
    StatusChangeRequest,
    WorkflowOutcome,
)
from app.services.files import FileResolver
from app.services.identity import StaticIdentity, require_user
from app.services.notifier import BackgroundNotificationQueue, Notifier, build_notifier
from app.services.store import Collections, SqlRecordStore
from app.workflow.errors import RecordNotFound
from app.workflow.ledger import compute_total
from app.workflow.query import ReimbursementQuery
from app.workflow.state_machine import ReimbursementWorkflow

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Dependencies ─────────────────────────────────────────────────────────
def get_store(db: Session = Depends(get_db)) -> SqlRecordStore:
    return SqlRecordStore(db)


def get_identity(x_user_id: Optional[str] = Header(default=None)) -> StaticIdentity:
    return StaticIdentity(x_user_id)


@lru_cache
def get_notifier() -> Notifier:
    return build_notifier(
        settings.NOTIFICATION_WEBHOOK_URL, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
    )


@lru_cache
def get_file_resolver() -> FileResolver:
    return FileResolver(settings.FILES_BASE_URL, settings.FILE_TOKEN)


def get_workflow(
    background_tasks: BackgroundTasks,
    store: SqlRecordStore = Depends(get_store),
    identity: StaticIdentity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
) -> ReimbursementWorkflow:
    return ReimbursementWorkflow(
        store,
        identity,
        notifier,
        BackgroundNotificationQueue(background_tasks),
        note_max_length=settings.NOTE_MAX_LENGTH,
        preview_length=settings.NOTE_PREVIEW_LENGTH,
        page_size=settings.JOURNAL_PAGE_SIZE,
    )


# ── GET /api/reimbursements ──────────────────────────────────────────────
@router.get("/reimbursements", response_model=List[ReimbursementView])
def list_reimbursements(
    status: List[ReimbursementStatus] = Query(default=[]),
    department: List[Department] = Query(default=[]),
    date_range: Literal["week", "month", "year", "all"] = "all",
    sort_by: Literal["date_of_purchase", "total_amount", "status"] = "date_of_purchase",
    sort_order: Literal["asc", "desc"] = "desc",
    hide_paid: bool = True,
    hide_rejected: bool = True,
    search: str = "",
    store: SqlRecordStore = Depends(get_store),
    identity: StaticIdentity = Depends(get_identity),
):
    user_id = require_user(identity)
    filters = ReimbursementFilters(
        status=status,
        department=department,
        date_range=date_range,
        sort_by=sort_by,
        sort_order=sort_order,
        hide_paid=hide_paid,
        hide_rejected=hide_rejected,
        search=search,
    )
    return ReimbursementQuery(store).fetch(filters, viewer_id=user_id)


# ── GET /api/reimbursements/{reimbursement_id} ───────────────────────────
@router.get("/reimbursements/{reimbursement_id}", response_model=ReimbursementView)
def get_reimbursement(
    reimbursement_id: str,
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    return workflow.refresh(reimbursement_id)


# ── GET /api/reimbursements/{reimbursement_id}/logs ──────────────────────
@router.get("/reimbursements/{reimbursement_id}/logs", response_model=JournalPage)
def get_logs(
    reimbursement_id: str,
    page: int = Query(default=1, ge=1),
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    return workflow.logs_page(reimbursement_id, page)


# ── GET /api/reimbursements/{reimbursement_id}/notes ─────────────────────
@router.get("/reimbursements/{reimbursement_id}/notes", response_model=JournalPage)
def get_notes(
    reimbursement_id: str,
    page: int = Query(default=1, ge=1),
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    return workflow.notes_page(reimbursement_id, page)


# ── POST /api/reimbursements/{reimbursement_id}/status ───────────────────
@router.post("/reimbursements/{reimbursement_id}/status", response_model=WorkflowOutcome)
def change_status(
    reimbursement_id: str,
    req: StatusChangeRequest,
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    logger.info("Status change requested: %s -> %s", reimbursement_id, req.status.value)
    return workflow.transition(reimbursement_id, req.status)


# ── POST /api/reimbursements/{reimbursement_id}/reject ───────────────────
@router.post("/reimbursements/{reimbursement_id}/reject", response_model=WorkflowOutcome)
def reject_reimbursement(
    reimbursement_id: str,
    req: RejectRequest,
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    logger.info("Rejection requested: %s", reimbursement_id)
    return workflow.reject(reimbursement_id, req.reason)


# ── POST /api/reimbursements/{reimbursement_id}/notes ────────────────────
@router.post("/reimbursements/{reimbursement_id}/notes", response_model=WorkflowOutcome)
def add_note(
    reimbursement_id: str,
    req: NoteCreate,
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    return workflow.add_note(reimbursement_id, req.note, req.is_private)


# ── POST /api/reimbursements/{reimbursement_id}/receipts/{receipt_id}/audit
@router.post(
    "/reimbursements/{reimbursement_id}/receipts/{receipt_id}/audit",
    response_model=WorkflowOutcome,
)
def audit_receipt(
    reimbursement_id: str,
    receipt_id: str,
    workflow: ReimbursementWorkflow = Depends(get_workflow),
):
    return workflow.audit_receipt(receipt_id, reimbursement_id)


# ── GET /api/reimbursements/{reimbursement_id}/receipts/{receipt_id} ─────
@router.get(
    "/reimbursements/{reimbursement_id}/receipts/{receipt_id}",
    response_model=ReceiptDetail,
)
def get_receipt(
    reimbursement_id: str,
    receipt_id: str,
    store: SqlRecordStore = Depends(get_store),
    identity: StaticIdentity = Depends(get_identity),
    files: FileResolver = Depends(get_file_resolver),
):
    require_user(identity)
    owner = store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
    if receipt_id not in (owner.get("receipts") or []):
        raise RecordNotFound(Collections.RECEIPTS, receipt_id)
    record = store.get_one(Collections.RECEIPTS, receipt_id)
    receipt = Receipt.from_record(record)
    return ReceiptDetail(
        receipt=receipt,
        total=compute_total(receipt),
        file_url=files.get_file_url(Collections.RECEIPTS, record, receipt.file, use_token=True),
    )
