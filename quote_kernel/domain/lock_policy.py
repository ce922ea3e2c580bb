"""Lock policy -- may a quote in its current status be edited, and must the
edit be versioned."""

from dataclasses import dataclass

from quote_kernel.domain.tenancy import TenantContext


@dataclass(frozen=True)
class LockCheck:
    locked: bool
    can_force_edit: bool
    requires_versioning: bool
    reason: str | None = None

    @property
    def may_edit(self) -> bool:
        return not self.locked or self.can_force_edit


@dataclass(frozen=True)
class LockPolicy:
    """
    Contract:
        A quote is locked iff its status is in ``locked_statuses``.  A locked
        quote may be edited only by an actor holding ``force_edit_permission``,
        and such an edit must snapshot the pre-edit state.
    Non-goals:
        Material-change versioning of unlocked quotes is decided by the
        versioning service, not here.
    """

    locked_statuses: frozenset[str] = frozenset({"approved", "accepted"})
    force_edit_permission: str = "quotes.force_edit"

    @classmethod
    def from_config(cls, config) -> "LockPolicy":
        return cls(
            locked_statuses=frozenset(config.status.locked_statuses),
            force_edit_permission=config.permissions.force_edit,
        )

    def evaluate(self, status: str, tenant: TenantContext) -> LockCheck:
        status = getattr(status, "value", status)
        if status not in self.locked_statuses:
            return LockCheck(locked=False, can_force_edit=False, requires_versioning=False)

        if tenant.has_permission(self.force_edit_permission):
            return LockCheck(
                locked=True,
                can_force_edit=True,
                requires_versioning=True,
                reason=f"Quote is {status} but user has force_edit permission",
            )
        return LockCheck(
            locked=True,
            can_force_edit=False,
            requires_versioning=False,
            reason=f"Quote is {status} and user lacks force_edit permission",
        )
