"""
Record store collaborator.

The workflow talks to persistence only through ``RecordStore``: fetch one record,
query many with a filter predicate and a sort, and patch fields of one record.
Records are plain dicts keyed by column name. ``SqlRecordStore`` is the SQLAlchemy
implementation used by the service; tests swap in wrappers around it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Union

from sqlalchemy import JSON, String, and_, cast, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ReceiptModel, ReimbursementModel, UserModel
from app.workflow.errors import PersistenceError, RecordNotFound

logger = logging.getLogger(__name__)


class Collections:
    REIMBURSEMENTS = "reimbursement"
    RECEIPTS = "receipts"
    USERS = "users"


# ---------------------------------------------------------------------------
# Filter predicates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Ne:
    field: str
    value: Any


@dataclass(frozen=True)
class Gte:
    field: str
    value: Any


@dataclass(frozen=True)
class Contains:
    """Substring match on text fields, membership on list fields."""
    field: str
    value: str


@dataclass(frozen=True)
class And:
    clauses: tuple["Filter", ...]


@dataclass(frozen=True)
class Or:
    clauses: tuple["Filter", ...]


Filter = Union[Eq, Ne, Gte, Contains, And, Or]


def all_of(*clauses: Optional[Filter]) -> Optional[Filter]:
    """AND together the non-empty clauses; ``None`` when nothing is left."""
    present = tuple(c for c in clauses if c is not None)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(present)


def any_of(field: str, values) -> Optional[Filter]:
    """OR of equality clauses, one per value; ``None`` for an empty set."""
    options = tuple(Eq(field, v) for v in values)
    if not options:
        return None
    if len(options) == 1:
        return options[0]
    return Or(options)


class RecordStore(Protocol):
    def get_one(self, collection: str, record_id: str) -> dict: ...

    def get_all(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        sort: Optional[str] = None,
    ) -> list[dict]: ...

    def update_fields(
        self, collection: str, record_id: str, fields: Mapping[str, Any]
    ) -> dict: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

_MODELS = {
    Collections.REIMBURSEMENTS: ReimbursementModel,
    Collections.RECEIPTS: ReceiptModel,
    Collections.USERS: UserModel,
}


class SqlRecordStore:
    """``RecordStore`` over the tables in ``app.models``."""

    def __init__(self, db: Session):
        self.db = db

    def _model(self, collection: str):
        try:
            return _MODELS[collection]
        except KeyError:
            raise PersistenceError(f"Unknown collection: {collection}") from None

    def _column(self, model, field: str):
        column = model.__table__.columns.get(field)
        if column is None:
            raise PersistenceError(f"Unknown field {field!r} on {model.__tablename__}")
        return getattr(model, field)

    def _clause(self, model, predicate: Filter):
        if isinstance(predicate, And):
            return and_(*(self._clause(model, c) for c in predicate.clauses))
        if isinstance(predicate, Or):
            return or_(*(self._clause(model, c) for c in predicate.clauses))
        column = self._column(model, predicate.field)
        if isinstance(predicate, Eq):
            return column == predicate.value
        if isinstance(predicate, Ne):
            return column != predicate.value
        if isinstance(predicate, Gte):
            return column >= predicate.value
        if isinstance(predicate, Contains):
            # JSON list columns are stored as text, so membership is a quoted substring
            if isinstance(model.__table__.columns[predicate.field].type, JSON):
                return cast(column, String).contains(f'"{predicate.value}"')
            return column.contains(predicate.value)
        raise PersistenceError(f"Unsupported filter: {predicate!r}")

    @staticmethod
    def _to_record(row) -> dict:
        record = {}
        for c in row.__table__.columns:
            value = getattr(row, c.name)
            record[c.name] = list(value) if isinstance(value, list) else value
        return record

    def _fetch(self, collection: str, record_id: str):
        model = self._model(collection)
        row = self.db.query(model).filter(model.id == record_id).first()
        if row is None:
            raise RecordNotFound(collection, record_id)
        return row

    def get_one(self, collection: str, record_id: str) -> dict:
        try:
            return self._to_record(self._fetch(collection, record_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read {collection}/{record_id}: {exc}") from exc

    def get_all(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        sort: Optional[str] = None,
    ) -> list[dict]:
        model = self._model(collection)
        query = self.db.query(model)
        if filter is not None:
            query = query.filter(self._clause(model, filter))
        if sort:
            descending = sort.startswith("-")
            column = self._column(model, sort.lstrip("-+"))
            query = query.order_by(column.desc() if descending else column.asc())
        try:
            rows = query.all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to query {collection}: {exc}") from exc
        return [self._to_record(r) for r in rows]

    def update_fields(
        self, collection: str, record_id: str, fields: Mapping[str, Any]
    ) -> dict:
        model = self._model(collection)
        for name in fields:
            self._column(model, name)
        try:
            row = self._fetch(collection, record_id)
            for name, value in fields.items():
                setattr(row, name, value)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to update {collection}/{record_id}: {exc}") from exc
        logger.info("Updated %s/%s fields=%s", collection, record_id, sorted(fields))
        return self._to_record(row)
