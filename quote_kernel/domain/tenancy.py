"""Tenant context -- the request-scoped identity handed to every engine call."""

from dataclasses import dataclass, field
from typing import Iterable

from quote_kernel.exceptions import TenantContextError


@dataclass(frozen=True)
class TenantContext:
    """
    Resolved by the upstream auth collaborator; never persisted.

    ``organization_id`` is the isolation boundary for every query.
    """

    organization_id: str
    user_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if not isinstance(self.permissions, frozenset):
            object.__setattr__(self, "permissions", frozenset(self.permissions))

    @classmethod
    def build(cls, organization_id, user_id, permissions: Iterable[str] = ()) -> "TenantContext":
        return cls(
            organization_id=str(organization_id) if organization_id is not None else "",
            user_id=str(user_id) if user_id is not None else "",
            permissions=frozenset(permissions),
        )

    def validate(self) -> None:
        if not self.organization_id or not str(self.organization_id).strip():
            raise TenantContextError("organization_id is required")
        if not self.user_id or not str(self.user_id).strip():
            raise TenantContextError("user_id is required")

    def has_permission(self, permission: str) -> bool:
        """Exact match, or ``*`` / ``<resource>.*`` wildcards."""
        if permission in self.permissions or "*" in self.permissions:
            return True
        resource = permission.split(".", 1)[0]
        return f"{resource}.*" in self.permissions
