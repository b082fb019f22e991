"""Role policy for privileged operations.

Every privileged operation goes through :func:`enforce`; the policy table is
the only place that says which role may do what.
"""

from enum import Enum

from app.core.exceptions import ForbiddenError
from app.core.logging import get_logger
from app.storage.base import LedgerStore, bounded

log = get_logger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    MASTER = "master"
    RESELLER = "reseller"
    CLIENT = "client"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        """Map a stored role value to Role; missing or unrecognized values are UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


ADJUST_CREDITS = "credits.adjust"
TRANSFER_CREDITS = "credits.transfer"
LIST_ACCOUNTS = "accounts.list"

POLICIES: dict[str, frozenset[Role]] = {
    ADJUST_CREDITS: frozenset({Role.ADMIN}),
    TRANSFER_CREDITS: frozenset({Role.MASTER}),
    LIST_ACCOUNTS: frozenset({Role.ADMIN}),
}

DENIAL_MESSAGES = {
    ADJUST_CREDITS: "Only admins can manage credits",
    TRANSFER_CREDITS: "Only master users can transfer credits",
    LIST_ACCOUNTS: "Only admin users can access this resource",
}


def is_allowed(action: str, role: Role | str | None) -> bool:
    allowed = POLICIES.get(action)
    if not allowed:
        return False
    return Role.parse(role.value if isinstance(role, Role) else role) in allowed


def authorize(role: Role | str | None) -> bool:
    """True only for admin: the gate in front of credit adjustments."""
    return is_allowed(ADJUST_CREDITS, role)


async def role_of(store: LedgerStore, account_id: str) -> Role:
    return Role.parse(await bounded(store.get_role(account_id)))


async def enforce(store: LedgerStore, actor_id: str, action: str) -> Role:
    """Look up actor's role; raise ForbiddenError unless the policy for action allows it."""
    role = await role_of(store, actor_id)
    if not is_allowed(action, role):
        log.info("authorization_denied", actor_id=actor_id, action=action, role=role.value)
        raise ForbiddenError(DENIAL_MESSAGES.get(action, "Forbidden"))
    return role
