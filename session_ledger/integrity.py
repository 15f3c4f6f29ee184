"""
Integrity warnings: conditions that must be surfaced to an operator but must
not block the operation that revealed them (delivered sessions cannot be
un-delivered).
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from session_ledger import ledger, models
from session_ledger.context import TenantContext
from session_ledger.models import WarningKind

logger = logging.getLogger(__name__)


def record_warning(
    db: Session,
    package: models.Package,
    kind: WarningKind,
    detail: str,
    *,
    used_sessions: int,
    unlocked_sessions: Optional[int] = None,
) -> models.IntegrityWarning:
    """Add a warning row to the caller's transaction (no commit here)."""
    warning = models.IntegrityWarning(
        organization_id=package.organization_id,
        package_id=package.id,
        kind=kind,
        detail=detail,
        used_sessions=used_sessions,
        unlocked_sessions=unlocked_sessions,
    )
    db.add(warning)
    logger.warning("[integrity] package=%s kind=%s %s", package.id, kind.value, detail)
    return warning


def reconcile_remaining(
    db: Session, package: models.Package, used_sessions: int
) -> Optional[models.IntegrityWarning]:
    """
    Recompute the display counter from the real usage count. A stored value
    that disagrees is recorded as drift before being overwritten.
    """
    expected = max(0, package.total_sessions - used_sessions)
    if package.remaining_sessions == expected:
        return None
    warning = record_warning(
        db,
        package,
        WarningKind.REMAINING_DRIFT,
        f"remaining_sessions was {package.remaining_sessions}, "
        f"{used_sessions} of {package.total_sessions} sessions are in use",
        used_sessions=used_sessions,
    )
    package.remaining_sessions = expected
    return warning


def audit_packages(db: Session, ctx: TenantContext) -> List[models.IntegrityWarning]:
    """
    Scan every package of the tenant for overflow (used > purchased),
    over-delivery (used > unlocked) and counter drift. New findings are
    stored; packages already flagged with an open warning of the same kind
    are not flagged twice.
    """
    open_kinds = {
        (w.package_id, w.kind)
        for w in db.query(models.IntegrityWarning).filter(
            models.IntegrityWarning.organization_id == ctx.organization_id,
            models.IntegrityWarning.resolved == False,  # noqa: E712
        )
    }
    found: List[models.IntegrityWarning] = []
    packages = (
        db.query(models.Package)
        .filter(models.Package.organization_id == ctx.organization_id)
        .order_by(models.Package.id)
        .all()
    )
    for package in packages:
        summary = ledger.summarize(db, package)
        used = summary.used_sessions

        if used > package.total_sessions and (package.id, WarningKind.OVERFLOW) not in open_kinds:
            found.append(record_warning(
                db, package, WarningKind.OVERFLOW,
                f"{used} sessions logged against {package.total_sessions} purchased",
                used_sessions=used, unlocked_sessions=summary.unlocked_sessions,
            ))
        if summary.over_delivered:
            package.over_delivered = True
            if (package.id, WarningKind.OVER_DELIVERED) not in open_kinds:
                found.append(record_warning(
                    db, package, WarningKind.OVER_DELIVERED,
                    f"{used} sessions used but only {summary.unlocked_sessions} paid for",
                    used_sessions=used, unlocked_sessions=summary.unlocked_sessions,
                ))
        drift = reconcile_remaining(db, package, used)
        if drift is not None:
            found.append(drift)

    db.commit()
    logger.info("[audit] organization=%s packages=%s new_warnings=%s",
                ctx.organization_id, len(packages), len(found))
    return found


def list_warnings(db: Session, ctx: TenantContext, *, include_resolved: bool = False):
    q = db.query(models.IntegrityWarning).filter(
        models.IntegrityWarning.organization_id == ctx.organization_id
    )
    if not include_resolved:
        q = q.filter(models.IntegrityWarning.resolved == False)  # noqa: E712
    return q.order_by(models.IntegrityWarning.created_at.desc(), models.IntegrityWarning.id.desc()).all()
