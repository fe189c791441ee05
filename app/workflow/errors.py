"""
Workflow error taxonomy.

Guard and validation errors are raised before any store call. ``PersistenceError``
wraps failures of the record store itself. Notification failures never surface as
exceptions.
"""


class ReimbursementError(Exception):
    """Base class for every failure reported by the review workflow."""
    status_code = 500


class AuthenticationRequired(ReimbursementError):
    """No current user identity."""
    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class InvalidRequest(ReimbursementError):
    status_code = 400


class TransitionNotAllowed(ReimbursementError):
    status_code = 409


class GateViolation(ReimbursementError):
    """Approval attempted before the caller audited every receipt."""
    status_code = 409


class PersistenceError(ReimbursementError):
    status_code = 502


class RecordNotFound(PersistenceError):
    status_code = 404

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record not found: {record_id}")
        self.collection = collection
        self.record_id = record_id


class UnreadableRecord(PersistenceError):
    """A stored record whose fields no longer fit the entity model."""

    def __init__(self, collection: str, record_id: str, reason: str):
        super().__init__(f"{collection} record {record_id} is unreadable: {reason}")
        self.collection = collection
        self.record_id = record_id
