from app.schemas.reimbursement import (  # noqa: F401
    AuditLogEntry,
    AuditNote,
    Department,
    ItemizedExpense,
    Receipt,
    Reimbursement,
    ReimbursementStatus,
    ReimbursementView,
)
from app.schemas.api import (  # noqa: F401
    JournalPage,
    NoteCreate,
    ReceiptDetail,
    ReimbursementFilters,
    RejectRequest,
    StatusChangeRequest,
    WorkflowOutcome,
)
