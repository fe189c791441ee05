"""
Reimbursement review workflow: receipt audit ledger, audit journal, status state
machine and the query layer over the record store.
"""
