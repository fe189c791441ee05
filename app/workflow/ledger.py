"""
Receipt audit ledger: per-receipt auditor sign-off and derived totals.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from app.schemas.reimbursement import ItemizedExpense, Receipt, Reimbursement
from app.services.store import Collections, Contains, RecordStore
from app.workflow.codec import Malformed, decode_sequence
from app.workflow.errors import InvalidRequest, PersistenceError, RecordNotFound
from app.workflow.journal import AuditJournal

logger = logging.getLogger(__name__)


def compute_total(receipt: Union[Receipt, Mapping[str, Any]]) -> float:
    """Sum of itemized amounts plus tax; 0 when the expenses cannot be read."""
    if isinstance(receipt, Receipt):
        raw, tax, receipt_id = receipt.itemized_expenses, receipt.tax, receipt.id
    else:
        raw, tax, receipt_id = receipt.get("itemized_expenses"), receipt.get("tax"), receipt.get("id")
    decoded = decode_sequence(raw, ItemizedExpense)
    if isinstance(decoded, Malformed):
        logger.error("Cannot compute total for receipt %s: %s", receipt_id, decoded.reason)
        return 0.0
    return sum(item.amount for item in decoded.items) + float(tax or 0)


def is_fully_audited(
    reimbursement: Reimbursement,
    receipts: Mapping[str, Receipt],
    auditor_id: Optional[str],
) -> bool:
    """True when *auditor_id* personally audited every receipt of the claim.

    A receipt id that is missing from *receipts* counts as not audited.
    """
    if not auditor_id:
        return False
    for receipt_id in reimbursement.receipts:
        receipt = receipts.get(receipt_id)
        if receipt is None or auditor_id not in receipt.audited_by:
            return False
    return True


class ReceiptAuditLedger:
    def __init__(self, store: RecordStore, journal: AuditJournal):
        self.store = store
        self.journal = journal

    def owner_of(self, receipt_id: str) -> str:
        """Id of the reimbursement whose ``receipts`` list references *receipt_id*."""
        owners = self.store.get_all(
            Collections.REIMBURSEMENTS, Contains("receipts", receipt_id)
        )
        owners = [r for r in owners if receipt_id in (r.get("receipts") or [])]
        if not owners:
            raise RecordNotFound(Collections.REIMBURSEMENTS, f"owner of receipt {receipt_id}")
        return owners[0]["id"]

    def audit_receipt(
        self,
        receipt_id: str,
        auditor_id: str,
        reimbursement_id: Optional[str] = None,
    ) -> list[str]:
        """Sign off *receipt_id* as *auditor_id*; returns journal warnings.

        The auditor set is de-duplicated before it is written, so repeating the call
        leaves it unchanged. Each call still records one ``receipt_audit`` entry on the
        owning reimbursement's journal.
        """
        if reimbursement_id is None:
            reimbursement_id = self.owner_of(receipt_id)
        else:
            owner = self.store.get_one(Collections.REIMBURSEMENTS, reimbursement_id)
            if receipt_id not in (owner.get("receipts") or []):
                raise InvalidRequest(
                    f"Receipt {receipt_id} does not belong to reimbursement {reimbursement_id}"
                )

        record = self.store.get_one(Collections.RECEIPTS, receipt_id)
        auditors = list(dict.fromkeys([*(record.get("audited_by") or []), auditor_id]))
        updated = self.store.update_fields(
            Collections.RECEIPTS, receipt_id, {"audited_by": auditors}
        )
        logger.info("Receipt %s audited by %s", receipt_id, auditor_id)

        receipt = Receipt.from_record(updated)
        entry = self.journal.new_log(
            "receipt_audit",
            auditor_id,
            receipt_id=receipt_id,
            receipt_name=receipt.location_name,
            receipt_date=receipt.date,
            receipt_amount=compute_total(updated),
        )
        try:
            self.journal.append_log(reimbursement_id, entry)
        except PersistenceError as exc:
            logger.error("Receipt %s audited but its log entry was lost: %s", receipt_id, exc)
            return [f"Receipt audited, but the audit log entry could not be recorded: {exc}"]
        return []
