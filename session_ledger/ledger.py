"""
Store-side reads shared by the payment, validation and integrity modules.

``used_sessions`` is always counted from the session rows themselves; the
package's ``remaining_sessions`` column is never read as a source of truth.
A session uses a slot unless it was cancelled; no-shows use one anyway.
"""

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from session_ledger import models
from session_ledger.errors import EntityNotFound
from session_ledger.money import quantize_money, to_decimal
from session_ledger.unlock import LedgerSummary


def lock_package(db: Session, package_id: int) -> models.Package:
    """
    Load a package with a row lock held until the transaction ends.
    Serializes capacity checks and balance checks on one package.
    """
    package = (
        db.query(models.Package)
        .filter(models.Package.id == package_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if package is None:
        raise EntityNotFound(f"Package {package_id} not found")
    return package


def count_used_sessions(db: Session, package_id: int) -> int:
    return (
        db.query(func.count(models.Session.id))
        .filter(
            models.Session.package_id == package_id,
            or_(
                models.Session.cancelled == False,  # noqa: E712
                models.Session.no_show == True,  # noqa: E712
            ),
        )
        .scalar()
    ) or 0


def paid_amount(db: Session, package_id: int):
    total = (
        db.query(func.sum(models.Payment.amount))
        .filter(models.Payment.package_id == package_id)
        .scalar()
    )
    return quantize_money(to_decimal(total))


def summarize(db: Session, package: models.Package) -> LedgerSummary:
    return LedgerSummary.build(
        total_value=package.total_value,
        total_sessions=package.total_sessions,
        paid_amount=paid_amount(db, package.id),
        used_sessions=count_used_sessions(db, package.id),
    )
