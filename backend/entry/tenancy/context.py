"""
Lightweight request-scoped context for org-aware operations.
"""

from dataclasses import dataclass
from typing import Optional

from entry.models.enums import RoleEnum


@dataclass
class RequestContext:
    """
    Captures the caller's org and role for downstream checks.
    """

    request_id: str
    org_id: int
    org_slug: str
    user_id: Optional[int]
    email: Optional[str]
    role: Optional[RoleEnum]

    @property
    def actor(self) -> str:
        return self.email or (f"user:{self.user_id}" if self.user_id else "system")
