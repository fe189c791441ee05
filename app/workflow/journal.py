"""
Audit journal: the two append-only streams kept on every reimbursement.

``audit_logs`` holds system-generated entries (status changes, receipt audits, note
additions) and ``audit_notes`` holds human-written notes. Each append reads the
current stream from the store, adds one entry and writes the whole stream back in a
single update. There is no locking: two concurrent appends to the same claim race and
the later write wins.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, Union

from app.schemas.api import JournalPage
from app.schemas.reimbursement import AuditLogEntry, AuditNote, ReimbursementView
from app.services.notifier import Notifier, NotificationQueue
from app.services.store import Collections, RecordStore
from app.workflow.codec import decode_logs, decode_notes, encode_sequence
from app.workflow.errors import InvalidRequest

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def paginate(
    entries: Sequence[Union[AuditLogEntry, AuditNote]], page: int, page_size: int
) -> JournalPage:
    """Most-recent-first page of a journal stream (pages are 1-based).

    Entries with equal timestamps keep later-appended entries first.
    """
    if page < 1:
        raise InvalidRequest("page must be >= 1")
    if page_size < 1:
        raise InvalidRequest("page_size must be >= 1")
    ordered = [
        entry
        for _, entry in sorted(
            enumerate(entries), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True
        )
    ]
    start = (page - 1) * page_size
    return JournalPage(
        items=ordered[start:start + page_size],
        page=page,
        page_size=page_size,
        total=len(ordered),
        total_pages=math.ceil(len(ordered) / page_size),
    )


def public_logs(entries: Sequence[AuditLogEntry]) -> list[AuditLogEntry]:
    """Drop the ``note_added`` entries that announce private notes."""
    return [e for e in entries if not (e.action == "note_added" and e.is_private)]


def public_notes(notes: Sequence[AuditNote]) -> list[AuditNote]:
    return [n for n in notes if not n.is_private]


def visible_to(view: ReimbursementView, viewer_id: Optional[str]) -> ReimbursementView:
    """The view as *viewer_id* may see it.

    A claim's submitter never sees private notes, nor the log entries that preview them.
    """
    claim = view.reimbursement
    if viewer_id != claim.submitted_by:
        return view
    hidden = claim.model_copy(
        update={"audit_notes": public_notes(claim.audit_notes), "audit_logs": public_logs(claim.audit_logs)}
    )
    return view.model_copy(update={"reimbursement": hidden})


class AuditJournal:
    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier,
        notifications: NotificationQueue,
        *,
        clock: Callable[[], datetime] = _utcnow,
        note_max_length: int = 500,
        preview_length: int = 50,
    ):
        self.store = store
        self.notifier = notifier
        self.notifications = notifications
        self.clock = clock
        self.note_max_length = note_max_length
        self.preview_length = preview_length

    # -- logs --------------------------------------------------------------

    def new_log(self, action: str, auditor_id: str, **payload) -> AuditLogEntry:
        return AuditLogEntry(
            action=action, auditor_id=auditor_id, timestamp=self.clock(), **payload
        )

    def append_log(self, reimbursement_id: str, entry: AuditLogEntry) -> list[AuditLogEntry]:
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        logs = decode_logs(record.get("audit_logs"))
        logs.append(entry)
        self.store.update_fields(
            Collections.REIMBURSEMENTS, reimbursement_id, {"audit_logs": encode_sequence(logs)}
        )
        logger.info("Journal %s: appended %s log (%d total)", reimbursement_id, entry.action, len(logs))
        return logs

    # -- notes -------------------------------------------------------------

    def validate_note(self, text: Optional[str]) -> str:
        cleaned = (text or "").strip()
        if not cleaned:
            raise InvalidRequest("Note must not be empty")
        if len(cleaned) > self.note_max_length:
            raise InvalidRequest(
                f"Note must be at most {self.note_max_length} characters (got {len(cleaned)})"
            )
        return cleaned

    def preview(self, text: str) -> str:
        if len(text) > self.preview_length:
            return f"{text[:self.preview_length]}..."
        return text

    def write_note(self, reimbursement_id: str, note: AuditNote) -> list[AuditNote]:
        """Append an already-validated note without any side effect."""
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        notes = decode_notes(record.get("audit_notes"))
        notes.append(note)
        self.store.update_fields(
            Collections.REIMBURSEMENTS, reimbursement_id, {"audit_notes": encode_sequence(notes)}
        )
        logger.info(
            "Journal %s: appended %s note (%d total)",
            reimbursement_id, "private" if note.is_private else "public", len(notes),
        )
        return notes

    def append_note(
        self, reimbursement_id: str, text: str, author_id: str, is_private: bool
    ) -> AuditNote:
        """Validate and append a note; public notes also notify the submitter."""
        cleaned = self.validate_note(text)
        note = AuditNote(
            note=cleaned, auditor_id=author_id, timestamp=self.clock(), is_private=is_private
        )
        self.write_note(reimbursement_id, note)
        if not is_private:
            self.notifications.submit(
                self.notifier.notify_comment, reimbursement_id, cleaned, author_id, is_private
            )
        return note

    # -- reading -----------------------------------------------------------

    def logs(self, reimbursement_id: str, include_private: bool = True) -> list[AuditLogEntry]:
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        logs = decode_logs(record.get("audit_logs"))
        if include_private:
            return logs
        return public_logs(logs)

    def notes(self, reimbursement_id: str, include_private: bool = True) -> list[AuditNote]:
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        notes = decode_notes(record.get("audit_notes"))
        if include_private:
            return notes
        return public_notes(notes)
