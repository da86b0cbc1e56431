"""
Acting-user roles and the Actor value passed to every service call.

The identity provider is external; the workflow trusts the resolved role for
all gating decisions (see ``fitout.middleware.identity``).
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    SALES = "sales"
    QUOTATION_TEAM = "quotation_team"
    PROCUREMENT = "procurement"
    SUPER_ADMIN = "super_admin"
    EXECUTION_TEAM = "execution_team"
    CLIENT = "client"
    VENDOR = "vendor"
    ACCOUNTS = "accounts"


ROLE_VALUES = frozenset(r.value for r in Role)


@dataclass(frozen=True)
class Actor:
    """Who is performing a transition.

    ``name`` is snapshotted into activity lines so the trail stays readable
    after the user record changes upstream.
    """

    id: str
    role: Role
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.id

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles
