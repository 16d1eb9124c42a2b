"""
Explicit per-request caller context.

Services take a RequestContext argument instead of looking up "the current
user" themselves.
"""

from dataclasses import dataclass
from typing import Optional

from commissionly.models.user import UserRole


@dataclass(frozen=True)
class RequestContext:
    organization_id: int
    user_id: Optional[int]
    role: UserRole
    ip_address: Optional[str] = None
    via_api_key: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_manage(self) -> bool:
        """Admins and managers run plan edits and the payout workflow."""
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)

    @classmethod
    def system(cls, organization_id: int) -> "RequestContext":
        """Context for scheduler jobs acting on behalf of an organization."""
        return cls(organization_id=organization_id, user_id=None, role=UserRole.ADMIN)
