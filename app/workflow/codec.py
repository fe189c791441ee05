"""
Decoding of the serialized sequences stored on reimbursement and receipt rows.

``itemized_expenses``, ``audit_logs`` and ``audit_notes`` are each persisted as one
JSON blob per row. Historical rows may predate a field or carry garbage, so a decode
never raises: it yields ``Ok(items)`` or ``Malformed(reason)``, and the ``*_or_empty``
helpers log the latter and carry on with an empty sequence.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from app.schemas.reimbursement import AuditLogEntry, AuditNote, ItemizedExpense

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    items: list[T]


@dataclass(frozen=True)
class Malformed:
    reason: str


Decoded = Union[Ok[T], Malformed]


def decode_sequence(raw: Any, model: Type[T]) -> Decoded:
    """Decode *raw* (JSON text, an already-structured list, or nothing) into models."""
    if raw is None or raw == "":
        return Ok([])
    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except ValueError as exc:
            return Malformed(f"invalid JSON: {exc}")
    if value is None:
        return Ok([])
    if not isinstance(value, list):
        return Malformed(f"expected a list, got {type(value).__name__}")
    items: list[T] = []
    for index, item in enumerate(value):
        if isinstance(item, model):
            items.append(item)
            continue
        try:
            items.append(model.model_validate(item))
        except ValidationError as exc:
            return Malformed(f"item {index}: {exc.error_count()} validation error(s)")
    return Ok(items)


def _or_empty(raw: Any, model: Type[T], what: str) -> list[T]:
    decoded = decode_sequence(raw, model)
    if isinstance(decoded, Malformed):
        logger.warning("Ignoring malformed %s blob: %s", what, decoded.reason)
        return []
    return decoded.items


def decode_expenses(raw: Any) -> list[ItemizedExpense]:
    return _or_empty(raw, ItemizedExpense, "itemized_expenses")


def decode_logs(raw: Any) -> list[AuditLogEntry]:
    return _or_empty(raw, AuditLogEntry, "audit_logs")


def decode_notes(raw: Any) -> list[AuditNote]:
    return _or_empty(raw, AuditNote, "audit_notes")


def encode_sequence(items: Sequence[BaseModel]) -> str:
    """Serialize a journal or expense sequence back into its stored JSON form."""
    return json.dumps(
        [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]
    )
