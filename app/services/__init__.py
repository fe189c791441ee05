"""
External collaborators of the review workflow: record store, identity, notifications
and file URLs.
"""
