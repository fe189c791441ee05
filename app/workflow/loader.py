"""
Re-fetching a reimbursement with its receipts and the names needed to display it.

Local state is never patched optimistically: after every write the workflow reloads
the claim from the store, since auditors and status may have changed underneath it.
"""
from __future__ import annotations

import logging
from typing import Iterable, Mapping

from pydantic import ValidationError

from app.schemas.reimbursement import Receipt, Reimbursement, ReimbursementView
from app.services.store import Collections, RecordStore
from app.workflow.errors import RecordNotFound, UnreadableRecord

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


class ReimbursementLoader:
    def __init__(self, store: RecordStore):
        self.store = store

    def user_names(self, user_ids: Iterable[str]) -> dict[str, str]:
        names: dict[str, str] = {}
        for user_id in dict.fromkeys(user_ids):
            try:
                user = self.store.get_one(Collections.USERS, user_id)
            except RecordNotFound:
                logger.warning("User %s not found", user_id)
                names[user_id] = UNKNOWN_USER
                continue
            names[user_id] = user.get("name") or UNKNOWN_USER
        return names

    def receipts(self, receipt_ids: Iterable[str]) -> list[Receipt]:
        """Load receipts in order, skipping any that no longer exist."""
        loaded = []
        for receipt_id in receipt_ids:
            try:
                loaded.append(Receipt.from_record(self.store.get_one(Collections.RECEIPTS, receipt_id)))
            except RecordNotFound:
                logger.warning("Failed to load receipt %s", receipt_id)
        return loaded

    def view(
        self,
        record: Mapping,
        receipts: Mapping[str, Receipt] | None = None,
        names: Mapping[str, str] | None = None,
    ) -> ReimbursementView:
        """Assemble a view, reusing already-loaded receipts and names where given."""
        try:
            reimbursement = Reimbursement.from_record(record)
        except ValidationError as exc:
            raise UnreadableRecord(
                Collections.REIMBURSEMENTS, record.get("id"), f"{exc.error_count()} invalid field(s)"
            ) from exc
        if receipts is None:
            loaded = self.receipts(reimbursement.receipts)
        else:
            loaded = [receipts[r] for r in reimbursement.receipts if r in receipts]
        auditor_ids = [a for r in loaded for a in r.audited_by]
        wanted = [reimbursement.submitted_by, *auditor_ids]
        if names is None:
            resolved = self.user_names(wanted)
        else:
            missing = [u for u in wanted if u not in names]
            resolved = {**names, **self.user_names(missing)}
        return ReimbursementView(
            reimbursement=reimbursement,
            receipts=loaded,
            submitter_name=resolved.get(reimbursement.submitted_by, UNKNOWN_USER),
            auditor_names={a: resolved.get(a, UNKNOWN_USER) for a in dict.fromkeys(auditor_ids)},
        )

    def load(self, reimbursement_id: str) -> ReimbursementView:
        record = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
        return self.view(record)
