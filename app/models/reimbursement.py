"""
Reimbursement, receipt and user tables.

Journal streams and itemized expenses are kept as serialized TEXT blobs on the
owning row; they are decoded by ``app.workflow.codec``.
"""
from sqlalchemy import Column, String, Text, JSON, DateTime, Float
from datetime import datetime, timezone
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """Portal user (submitters and auditors)."""
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    email = Column(String)
    created = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class ReimbursementModel(Base):
    """One expense claim."""
    __tablename__ = "reimbursement"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    total_amount = Column(Float, nullable=False, default=0.0)
    date_of_purchase = Column(String, nullable=False)
    payment_method = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="submitted", index=True)
    submitted_by = Column(String, nullable=False, index=True)
    additional_info = Column(Text, default="")
    receipts = Column(JSON, nullable=False, default=list)  # ordered receipt ids
    department = Column(String, nullable=False, default="other", index=True)
    audit_notes = Column(Text)  # JSON array of AuditNote
    audit_logs = Column(Text)  # JSON array of AuditLogEntry

    created = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class ReceiptModel(Base):
    """One proof of purchase; owned by a reimbursement through its ``receipts`` list."""
    __tablename__ = "receipts"

    id = Column(String, primary_key=True)
    file = Column(String, default="")
    created_by = Column(String, index=True)
    itemized_expenses = Column(Text)  # JSON array of ItemizedExpense
    tax = Column(Float, nullable=False, default=0.0)
    date = Column(String)
    location_name = Column(String, default="")
    location_address = Column(String, default="")
    notes = Column(Text, default="")
    audited_by = Column(JSON, nullable=False, default=list)  # auditor user ids

    created = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
