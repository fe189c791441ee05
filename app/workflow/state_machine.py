"""
Reimbursement status state machine and the workflow operations built on it.

    submitted -> under_review -> approved -> in_progress -> paid
    (any of the first four) -> rejected

``paid`` and ``rejected`` are terminal. Approval is gated on the acting user having
audited every receipt of the claim. Every successful transition writes the status,
appends one ``status_change`` log entry, queues one best-effort notification and
returns the claim re-fetched from the store.

Who may call which transition is decided by the caller; nothing here checks roles.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from app.schemas.api import JournalPage, WorkflowOutcome
from app.schemas.reimbursement import AuditNote, Reimbursement, ReimbursementStatus, ReimbursementView
from app.services.identity import Identity, require_user
from app.services.notifier import Notifier, NotificationQueue
from app.services.store import Collections, RecordStore
from app.workflow.errors import (
    GateViolation,
    InvalidRequest,
    PersistenceError,
    TransitionNotAllowed,
)
from app.workflow.journal import AuditJournal, paginate, visible_to
from app.workflow.ledger import ReceiptAuditLedger, is_fully_audited
from app.workflow.loader import ReimbursementLoader

logger = logging.getLogger(__name__)

S = ReimbursementStatus

TRANSITIONS: dict[ReimbursementStatus, frozenset[ReimbursementStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.REJECTED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.IN_PROGRESS, S.REJECTED}),
    S.IN_PROGRESS: frozenset({S.PAID, S.REJECTED}),
    S.PAID: frozenset(),
    S.REJECTED: frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

REJECTION_PREFIX = "Rejection Reason: "


def allowed_transitions(status: ReimbursementStatus) -> frozenset[ReimbursementStatus]:
    return TRANSITIONS[status]


def check_transition(current: ReimbursementStatus, target: ReimbursementStatus) -> None:
    if target not in TRANSITIONS[current]:
        if current in TERMINAL:
            raise TransitionNotAllowed(f"Reimbursement is {current.value}; no further status changes")
        raise TransitionNotAllowed(f"Cannot move from {current.value} to {target.value}")


def _parse_status(value) -> ReimbursementStatus:
    try:
        return ReimbursementStatus(value)
    except ValueError:
        raise InvalidRequest(f"Unknown status: {value!r}") from None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReimbursementWorkflow:
    """Entry point for every review operation on a claim."""

    def __init__(
        self,
        store: RecordStore,
        identity: Identity,
        notifier: Notifier,
        notifications: NotificationQueue,
        *,
        clock: Callable[[], datetime] = _utcnow,
        note_max_length: int = 500,
        preview_length: int = 50,
        page_size: int = 5,
    ):
        self.store = store
        self.identity = identity
        self.notifier = notifier
        self.notifications = notifications
        self.page_size = page_size
        self.journal = AuditJournal(
            store,
            notifier,
            notifications,
            clock=clock,
            note_max_length=note_max_length,
            preview_length=preview_length,
        )
        self.ledger = ReceiptAuditLedger(store, self.journal)
        self.loader = ReimbursementLoader(store)

    # -- reads -------------------------------------------------------------

    def refresh(self, reimbursement_id: str) -> ReimbursementView:
        """Re-fetch the claim as the current user may see it."""
        user_id = require_user(self.identity)
        return visible_to(self.loader.load(reimbursement_id), user_id)

    def _outcome(self, reimbursement_id: str, warnings: list[str]) -> WorkflowOutcome:
        return WorkflowOutcome(view=self.refresh(reimbursement_id), warnings=warnings)

    def can_approve(self, reimbursement_id: str) -> bool:
        """Whether the current user has audited every receipt of the claim."""
        user_id = require_user(self.identity)
        view = self.refresh(reimbursement_id)
        return is_fully_audited(view.reimbursement, view.receipt_map(), user_id)

    def _sees_private(self, reimbursement_id: str) -> bool:
        """Submitters never see private notes or the log entries that preview them."""
        user_id = require_user(self.identity)
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        return record.get("submitted_by") != user_id

    def logs_page(self, reimbursement_id: str, page: int = 1) -> JournalPage:
        include_private = self._sees_private(reimbursement_id)
        return paginate(
            self.journal.logs(reimbursement_id, include_private=include_private),
            page,
            self.page_size,
        )

    def notes_page(self, reimbursement_id: str, page: int = 1) -> JournalPage:
        include_private = self._sees_private(reimbursement_id)
        return paginate(
            self.journal.notes(reimbursement_id, include_private=include_private),
            page,
            self.page_size,
        )

    # -- transitions -------------------------------------------------------

    def _change_status(
        self, reimbursement_id: str, target: ReimbursementStatus, actor_id: str
    ) -> tuple[ReimbursementStatus, list[str]]:
        """Guard, write and log one status change; returns the previous status."""
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        current = _parse_status(record.get("status"))
        check_transition(current, target)

        if target is S.APPROVED:
            reimbursement = Reimbursement.from_record(record)
            receipts = {r.id: r for r in self.loader.receipts(reimbursement.receipts)}
            if not is_fully_audited(reimbursement, receipts, actor_id):
                raise GateViolation(
                    "All receipts must be audited by you before the reimbursement can be approved"
                )

        self.store.update_fields(
            Collections.REIMBURSEMENTS, reimbursement_id, {"status": target.value}
        )
        logger.info(
            "Reimbursement %s: %s -> %s by %s",
            reimbursement_id, current.value, target.value, actor_id,
        )

        warnings: list[str] = []
        entry = self.journal.new_log(
            "status_change", actor_id, from_status=current.value, to_status=target.value
        )
        try:
            self.journal.append_log(reimbursement_id, entry)
        except PersistenceError as exc:
            logger.error("Status of %s changed but the log entry was lost: %s", reimbursement_id, exc)
            warnings.append(f"Status changed, but the audit log entry could not be recorded: {exc}")
        return current, warnings

    def _notify_status(
        self,
        reimbursement_id: str,
        target: ReimbursementStatus,
        previous: ReimbursementStatus,
        actor_id: str,
        extra_context: Optional[dict] = None,
    ) -> None:
        self.notifications.submit(
            self.notifier.notify_status_change,
            reimbursement_id,
            target.value,
            previous.value,
            actor_id,
            extra_context,
        )

    def transition(self, reimbursement_id: str, status) -> WorkflowOutcome:
        """Move a claim to *status*; rejection goes through ``reject``."""
        actor_id = require_user(self.identity)
        target = _parse_status(status)
        if target is S.REJECTED:
            raise InvalidRequest("A rejection reason is required; use reject()")
        previous, warnings = self._change_status(reimbursement_id, target, actor_id)
        self._notify_status(reimbursement_id, target, previous, actor_id)
        return self._outcome(reimbursement_id, warnings)

    def reject(self, reimbursement_id: str, reason: Optional[str]) -> WorkflowOutcome:
        """Reject a claim and record *reason* as a public note.

        The note is written after the status. If that write fails the claim stays
        rejected and the outcome carries a warning instead of raising.
        """
        actor_id = require_user(self.identity)
        cleaned = (reason or "").strip()
        if not cleaned:
            raise InvalidRequest("A rejection reason is required")
        if len(cleaned) > self.journal.note_max_length:
            raise InvalidRequest(
                f"Rejection reason must be at most {self.journal.note_max_length} characters"
            )

        previous, warnings = self._change_status(reimbursement_id, S.REJECTED, actor_id)
        note = AuditNote(
            note=f"{REJECTION_PREFIX}{cleaned}",
            auditor_id=actor_id,
            timestamp=self.journal.clock(),
            is_private=False,
        )
        try:
            self.journal.write_note(reimbursement_id, note)
        except PersistenceError as exc:
            logger.error("Reimbursement %s rejected without a recorded reason: %s", reimbursement_id, exc)
            warnings.append(f"Reimbursement rejected, but the rejection reason could not be saved: {exc}")
        self._notify_status(
            reimbursement_id, S.REJECTED, previous, actor_id, {"rejectionReason": cleaned}
        )
        return self._outcome(reimbursement_id, warnings)

    # -- journal & audit ---------------------------------------------------

    def add_note(self, reimbursement_id: str, text: str, is_private: bool = True) -> WorkflowOutcome:
        actor_id = require_user(self.identity)
        note = self.journal.append_note(reimbursement_id, text, actor_id, is_private)
        warnings: list[str] = []
        entry = self.journal.new_log(
            "note_added",
            actor_id,
            note_preview=self.journal.preview(note.note),
            is_private=is_private,
        )
        try:
            self.journal.append_log(reimbursement_id, entry)
        except PersistenceError as exc:
            logger.error("Note saved on %s but its log entry was lost: %s", reimbursement_id, exc)
            warnings.append(f"Note saved, but the audit log entry could not be recorded: {exc}")
        return self._outcome(reimbursement_id, warnings)

    def audit_receipt(
        self, receipt_id: str, reimbursement_id: Optional[str] = None
    ) -> WorkflowOutcome:
        actor_id = require_user(self.identity)
        if reimbursement_id is None:
            reimbursement_id = self.ledger.owner_of(receipt_id)
        warnings = self.ledger.audit_receipt(receipt_id, actor_id, reimbursement_id)
        return self._outcome(reimbursement_id, warnings)
