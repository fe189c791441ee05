"""
Unit tests for receipt totals, the approval gate and receipt sign-off.
"""
import pytest

from app.schemas import Receipt, Reimbursement
from app.services.store import Collections
from app.workflow.errors import AuthenticationRequired, InvalidRequest, RecordNotFound
from app.workflow.ledger import compute_total, is_fully_audited
from tests.conftest import AUDITOR, OTHER_AUDITOR, FlakyStore, add_receipt, add_reimbursement


def _receipt(rid, audited_by=()):
    return Receipt(id=rid, audited_by=list(audited_by))


def _claim(receipt_ids):
    return Reimbursement(
        id="r", title="t", date_of_purchase="2025-01-01", submitted_by="s", receipts=list(receipt_ids)
    )


# =====================================================================
# compute_total
# =====================================================================
class TestComputeTotal:
    def test_sum_plus_tax(self):
        record = {"id": "x", "itemized_expenses": '[{"amount": 10}, {"amount": 5.50}]', "tax": 1.23}
        assert compute_total(record) == pytest.approx(16.73)

    def test_structured_sequence(self):
        record = {"id": "x", "itemized_expenses": [{"amount": 10}, {"amount": 5.50}], "tax": 1.23}
        assert compute_total(record) == pytest.approx(16.73)

    def test_entity(self):
        receipt = Receipt.from_record(
            {"id": "x", "itemized_expenses": '[{"description": "a", "category": "b", "amount": 2}]', "tax": 0.5}
        )
        assert compute_total(receipt) == pytest.approx(2.5)
        assert receipt.total == pytest.approx(2.5)

    def test_unparsable_blob_is_zero(self, caplog):
        record = {"id": "x", "itemized_expenses": "{not json", "tax": 1.23}
        assert compute_total(record) == 0
        assert "Cannot compute total" in caplog.text

    def test_wrong_shape_is_zero(self):
        assert compute_total({"id": "x", "itemized_expenses": '{"amount": 3}', "tax": 1}) == 0

    def test_missing_expenses_is_tax_only(self):
        assert compute_total({"id": "x", "itemized_expenses": None, "tax": 2}) == pytest.approx(2)


# =====================================================================
# is_fully_audited
# =====================================================================
class TestGate:
    def test_all_receipts_audited_by_caller(self):
        receipts = {"a": _receipt("a", [AUDITOR]), "b": _receipt("b", [OTHER_AUDITOR, AUDITOR])}
        assert is_fully_audited(_claim(["a", "b"]), receipts, AUDITOR)

    def test_audited_by_someone_else_does_not_count(self):
        receipts = {"a": _receipt("a", [AUDITOR]), "b": _receipt("b", [OTHER_AUDITOR])}
        assert not is_fully_audited(_claim(["a", "b"]), receipts, AUDITOR)

    def test_missing_receipt_is_not_audited(self):
        assert not is_fully_audited(_claim(["a", "b"]), {"a": _receipt("a", [AUDITOR])}, AUDITOR)

    def test_no_identity(self):
        assert not is_fully_audited(_claim(["a"]), {"a": _receipt("a", [AUDITOR])}, None)

    def test_claim_without_receipts(self):
        assert is_fully_audited(_claim([]), {}, AUDITOR)


# =====================================================================
# audit_receipt
# =====================================================================
class TestAuditReceipt:
    def test_adds_auditor_and_logs_on_claim(self, workflow, seeded, store):
        outcome = workflow.audit_receipt("rc1", seeded)

        assert not outcome.degraded
        receipt = store.get_one(Collections.RECEIPTS, "rc1")
        assert receipt["audited_by"] == [AUDITOR]

        logs = outcome.view.reimbursement.audit_logs
        assert len(logs) == 1
        entry = logs[0]
        assert entry.action == "receipt_audit"
        assert entry.receipt_id == "rc1"
        assert entry.receipt_name == "Pizza Place"
        assert entry.receipt_date == "2025-02-10"
        assert entry.receipt_amount == pytest.approx(11.0)
        assert entry.auditor_id == AUDITOR
        assert outcome.view.auditor_names == {AUDITOR: "Alex Auditor"}

    def test_twice_keeps_set_but_logs_twice(self, workflow, seeded, store):
        workflow.audit_receipt("rc1", seeded)
        outcome = workflow.audit_receipt("rc1", seeded)

        assert store.get_one(Collections.RECEIPTS, "rc1")["audited_by"] == [AUDITOR]
        actions = [e.action for e in outcome.view.reimbursement.audit_logs]
        assert actions == ["receipt_audit", "receipt_audit"]

    def test_accumulates_auditors(self, make_workflow, seeded, store):
        make_workflow(OTHER_AUDITOR).audit_receipt("rc1", seeded)
        make_workflow(AUDITOR).audit_receipt("rc1", seeded)
        assert sorted(store.get_one(Collections.RECEIPTS, "rc1")["audited_by"]) == sorted([AUDITOR, OTHER_AUDITOR])

    def test_finds_owning_claim(self, workflow, seeded):
        outcome = workflow.audit_receipt("rc2")
        assert outcome.view.reimbursement.id == seeded

    def test_orphan_receipt(self, workflow, seeded, db):
        add_receipt(db, "loose")
        with pytest.raises(RecordNotFound):
            workflow.audit_receipt("loose")

    def test_receipt_of_another_claim(self, workflow, seeded, db):
        add_receipt(db, "rc9")
        add_reimbursement(db, "r9", receipts=["rc9"])
        with pytest.raises(InvalidRequest):
            workflow.audit_receipt("rc9", seeded)

    def test_requires_identity(self, make_workflow, seeded, store):
        flaky = FlakyStore(store)
        with pytest.raises(AuthenticationRequired):
            make_workflow(None, record_store=flaky).audit_receipt("rc1", seeded)
        assert flaky.writes == []

    def test_log_failure_is_partial_success(self, make_workflow, seeded, store):
        flaky = FlakyStore(store, fail_when=lambda c, i, f: "audit_logs" in f)
        outcome = make_workflow(record_store=flaky).audit_receipt("rc1", seeded)

        assert outcome.degraded
        assert store.get_one(Collections.RECEIPTS, "rc1")["audited_by"] == [AUDITOR]
        assert outcome.view.reimbursement.audit_logs == []
