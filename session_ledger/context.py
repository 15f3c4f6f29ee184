from dataclasses import dataclass
from typing import Optional

from session_ledger.errors import CrossTenantMismatch


@dataclass(frozen=True)
class TenantContext:
    """Caller identity handed in by the auth layer. Trusted as-is."""

    organization_id: int
    user_id: Optional[int] = None
    role: Optional[str] = None

    def require_same_tenant(self, *rows) -> None:
        """
        Raise CrossTenantMismatch unless every row belongs to this
        organization. Rows are anything with an ``organization_id``.
        """
        for row in rows:
            if row is None:
                continue
            if row.organization_id != self.organization_id:
                raise CrossTenantMismatch(
                    f"{type(row).__name__} {row.id} does not belong to organization {self.organization_id}",
                    entity=type(row).__name__,
                    entity_id=row.id,
                )
