"""
Custom exceptions for org-scoped lookups.
"""


class OrgNotFound(Exception):
    """Raised when an org or a resource owned by that org does not exist."""
