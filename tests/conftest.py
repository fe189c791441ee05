"""
Shared pytest fixtures: in‑memory SQLite and seeded claims.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models import ReceiptModel, ReimbursementModel, UserModel
from app.main import app
from app.routers.reimbursements import get_notifier
from app.services.identity import StaticIdentity
from app.services.notifier import InlineNotificationQueue
from app.services.store import SqlRecordStore
from app.workflow.errors import PersistenceError
from app.workflow.state_machine import ReimbursementWorkflow

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)

SUBMITTER = "user-submitter"
AUDITOR = "user-auditor"
OTHER_AUDITOR = "user-other"


class RecordingNotifier:
    """Notifier double that remembers every call and can be told to fail."""

    def __init__(self):
        self.status_changes = []
        self.comments = []
        self.fail_with = None  # exception instance to raise
        self.result = True

    def notify_status_change(self, reimbursement_id, new_status, previous_status, actor_id, extra_context=None):
        self.status_changes.append(
            dict(
                reimbursement_id=reimbursement_id,
                new_status=new_status,
                previous_status=previous_status,
                actor_id=actor_id,
                extra_context=extra_context,
            )
        )
        if self.fail_with is not None:
            raise self.fail_with
        return self.result

    def notify_comment(self, reimbursement_id, text, author_id, is_private):
        self.comments.append(
            dict(reimbursement_id=reimbursement_id, text=text, author_id=author_id, is_private=is_private)
        )
        if self.fail_with is not None:
            raise self.fail_with
        return self.result


class FlakyStore:
    """Wraps a store, recording writes and failing the ones *fail_when* selects."""

    def __init__(self, inner, fail_when=None):
        self.inner = inner
        self.fail_when = fail_when
        self.writes = []

    def get_one(self, collection, record_id):
        return self.inner.get_one(collection, record_id)

    def get_all(self, collection, filter=None, sort=None):
        return self.inner.get_all(collection, filter, sort)

    def update_fields(self, collection, record_id, fields):
        if self.fail_when is not None and self.fail_when(collection, record_id, fields):
            raise PersistenceError(f"simulated failure writing {sorted(fields)}")
        self.writes.append((collection, record_id, dict(fields)))
        return self.inner.update_fields(collection, record_id, fields)


class TickingClock:
    """Strictly increasing timestamps, one second apart."""

    def __init__(self, start=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db):
    return SqlRecordStore(db)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def clock():
    return TickingClock()


@pytest.fixture()
def make_workflow(store, notifier, clock):
    def _make(user_id=AUDITOR, record_store=None):
        return ReimbursementWorkflow(
            record_store or store,
            StaticIdentity(user_id),
            notifier,
            InlineNotificationQueue(),
            clock=clock,
        )

    return _make


@pytest.fixture()
def workflow(make_workflow):
    return make_workflow()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def add_user(db, user_id, name):
    db.add(UserModel(id=user_id, name=name, email=f"{user_id}@example.org"))
    db.commit()


def add_receipt(db, receipt_id, expenses=None, tax=0.0, audited_by=None, **fields):
    db.add(
        ReceiptModel(
            id=receipt_id,
            file=fields.pop("file", f"{receipt_id}.pdf"),
            created_by=fields.pop("created_by", SUBMITTER),
            itemized_expenses=expenses if isinstance(expenses, str) else json.dumps(expenses or []),
            tax=tax,
            date=fields.pop("date", "2025-02-10"),
            location_name=fields.pop("location_name", "Campus Store"),
            location_address=fields.pop("location_address", "9500 Gilman Dr"),
            audited_by=list(audited_by or []),
            **fields,
        )
    )
    db.commit()


def add_reimbursement(db, reimbursement_id, receipts=(), status="submitted", **fields):
    db.add(
        ReimbursementModel(
            id=reimbursement_id,
            title=fields.pop("title", "Workshop supplies"),
            total_amount=fields.pop("total_amount", 42.0),
            date_of_purchase=fields.pop("date_of_purchase", "2025-02-10"),
            payment_method=fields.pop("payment_method", "Personal card"),
            status=status,
            submitted_by=fields.pop("submitted_by", SUBMITTER),
            additional_info=fields.pop("additional_info", ""),
            receipts=list(receipts),
            department=fields.pop("department", "events"),
            **fields,
        )
    )
    db.commit()


@pytest.fixture()
def seeded(db):
    """Claim ``r1`` (submitted) with two unaudited receipts, plus named users."""
    add_user(db, SUBMITTER, "Sam Submitter")
    add_user(db, AUDITOR, "Alex Auditor")
    add_user(db, OTHER_AUDITOR, "Olive Other")
    add_receipt(db, "rc1", expenses=[{"description": "Pizza", "category": "Food", "amount": 10}], tax=1.0,
                location_name="Pizza Place")
    add_receipt(db, "rc2", expenses=[{"description": "Cups", "category": "Supplies", "amount": 5.5}], tax=0.5,
                location_name="Party City")
    add_reimbursement(db, "r1", receipts=["rc1", "rc2"])
    return "r1"


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture()
def client(db, notifier):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
