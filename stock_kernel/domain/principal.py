"""The acting user inside one tenant, as resolved by AccessService."""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class Principal:
    """
    Who is acting, and in which tenant.

    Guarantees:
        - permissions is the effective key set of the user's role at the
          time the principal was resolved.
    """

    tenant_id: UUID
    user_id: UUID
    role_id: UUID | None = None
    role_name: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has(self, permission: str) -> bool:
        return permission in self.permissions
