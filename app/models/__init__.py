from app.models.reimbursement import ReceiptModel, ReimbursementModel, UserModel

__all__ = ["ReceiptModel", "ReimbursementModel", "UserModel"]
