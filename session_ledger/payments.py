"""
Payment recording and deletion.

Both operations hold the package row lock for the balance check, the write
and the unlock recomputation, and commit once at the end.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from session_ledger import integrity, ledger, models
from session_ledger.config import get_settings
from session_ledger.context import TenantContext
from session_ledger.errors import EntityNotFound, ExceedsRemainingBalance, InvalidPaymentAmount
from session_ledger.models import PaymentMethod, WarningKind, as_naive_utc, utcnow
from session_ledger.money import quantize_money, to_decimal
from session_ledger.notifications import Outbox, PackageOverDelivered, SessionsUnlocked
from session_ledger.unlock import LedgerSummary, sessions_unlocked_by_payment

logger = logging.getLogger(__name__)


@dataclass
class PaymentRecorded:
    payment: models.Payment
    newly_unlocked_sessions: int
    summary: LedgerSummary


@dataclass
class PaymentDeleted:
    summary: LedgerSummary
    over_delivered: bool
    warning: Optional[str] = None


def _check_attribution(db: Session, ctx: TenantContext, trainer_id: Optional[int]) -> None:
    if trainer_id is None:
        return
    trainer = db.get(models.Trainer, trainer_id)
    if trainer is None:
        raise EntityNotFound(f"Trainer {trainer_id} not found")
    ctx.require_same_tenant(trainer)


def add_payment(
    db: Session,
    ctx: TenantContext,
    package: models.Package,
    amount: Decimal,
    *,
    payment_date: Optional[datetime] = None,
    payment_method: PaymentMethod = PaymentMethod.CARD,
    notes: Optional[str] = None,
    sales_attributed_to_id: Optional[int] = None,
    sales_attributed_to_2_id: Optional[int] = None,
    now: Optional[datetime] = None,
):
    """
    Balance check + insert inside the caller's transaction. Returns the new
    payment and the paid amount before it. Does not commit.
    """
    settings = get_settings()
    # Rounded first so a sub-cent amount cannot be stored as 0.00
    amount = quantize_money(to_decimal(amount))
    if amount <= 0:
        raise InvalidPaymentAmount("Amount must be a positive number")

    _check_attribution(db, ctx, sales_attributed_to_id)
    _check_attribution(db, ctx, sales_attributed_to_2_id)

    paid_before = ledger.paid_amount(db, package.id)
    remaining_balance = to_decimal(package.total_value) - paid_before
    if amount > remaining_balance + settings.PAYMENT_EPSILON:
        raise ExceedsRemainingBalance(
            f"Amount exceeds remaining balance of ${max(remaining_balance, Decimal('0')):.2f}",
            remaining_balance=str(remaining_balance),
        )

    payment = models.Payment(
        organization_id=package.organization_id,
        package_id=package.id,
        amount=amount,
        payment_date=as_naive_utc(payment_date or now) or utcnow(),
        payment_method=payment_method,
        notes=notes or None,
        created_by_id=ctx.user_id,
        sales_attributed_to_id=sales_attributed_to_id,
        sales_attributed_to_2_id=sales_attributed_to_2_id,
    )
    db.add(payment)
    db.flush()
    return payment, paid_before


def record_payment(
    db: Session,
    ctx: TenantContext,
    package_id: int,
    amount: Decimal,
    *,
    payment_date: Optional[datetime] = None,
    payment_method: PaymentMethod = PaymentMethod.CARD,
    notes: Optional[str] = None,
    sales_attributed_to_id: Optional[int] = None,
    sales_attributed_to_2_id: Optional[int] = None,
    now: Optional[datetime] = None,
    outbox: Optional[Outbox] = None,
) -> PaymentRecorded:
    """
    Record money received against a package and report how many sessions it
    unlocked. Rejected before any write if it would overpay the package.
    """
    try:
        package = ledger.lock_package(db, package_id)
        ctx.require_same_tenant(package)

        payment, paid_before = add_payment(
            db, ctx, package, amount,
            payment_date=payment_date,
            payment_method=payment_method,
            notes=notes,
            sales_attributed_to_id=sales_attributed_to_id,
            sales_attributed_to_2_id=sales_attributed_to_2_id,
            now=now,
        )
        newly_unlocked = sessions_unlocked_by_payment(
            paid_before, payment.amount, package.total_value, package.total_sessions
        )
        summary = ledger.summarize(db, package)
        if package.over_delivered and not summary.over_delivered:
            package.over_delivered = False
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(
        "[payment] package=%s amount=%s unlocked=%s/%s (+%s)",
        package.id, payment.amount, summary.unlocked_sessions, summary.total_sessions, newly_unlocked,
    )
    if outbox is not None and newly_unlocked > 0:
        outbox.stage(SessionsUnlocked(
            package_id=package.id,
            client_id=package.client_id,
            newly_unlocked=newly_unlocked,
            unlocked_sessions=summary.unlocked_sessions,
            available_sessions=summary.available_sessions,
        ))
    return PaymentRecorded(payment=payment, newly_unlocked_sessions=newly_unlocked, summary=summary)


def delete_payment(
    db: Session,
    ctx: TenantContext,
    payment_id: int,
    *,
    outbox: Optional[Outbox] = None,
) -> PaymentDeleted:
    """
    Remove a payment that was not in fact received. Always permitted; if the
    sessions already delivered now exceed the unlocked count, the package is
    flagged over-delivered and a warning is recorded.
    """
    try:
        payment = db.get(models.Payment, payment_id)
        if payment is None:
            raise EntityNotFound(f"Payment {payment_id} not found")
        ctx.require_same_tenant(payment)

        package = ledger.lock_package(db, payment.package_id)
        db.delete(payment)
        db.flush()

        summary = ledger.summarize(db, package)
        message = None
        if summary.over_delivered:
            package.over_delivered = True
            message = (
                f"{summary.used_sessions} sessions have been delivered but only "
                f"{summary.unlocked_sessions} remain paid for after deleting this payment"
            )
            integrity.record_warning(
                db, package, WarningKind.OVER_DELIVERED, message,
                used_sessions=summary.used_sessions,
                unlocked_sessions=summary.unlocked_sessions,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("[payment] deleted payment=%s package=%s", payment_id, package.id)
    if outbox is not None and summary.over_delivered:
        outbox.stage(PackageOverDelivered(
            package_id=package.id,
            used_sessions=summary.used_sessions,
            unlocked_sessions=summary.unlocked_sessions,
        ))
    return PaymentDeleted(summary=summary, over_delivered=summary.over_delivered, warning=message)


def get_package_summary(db: Session, ctx: TenantContext, package_id: int) -> LedgerSummary:
    package = db.get(models.Package, package_id)
    if package is None:
        raise EntityNotFound(f"Package {package_id} not found")
    ctx.require_same_tenant(package)
    return ledger.summarize(db, package)


def list_payments(db: Session, ctx: TenantContext, package_id: int) -> List[models.Payment]:
    package = db.get(models.Package, package_id)
    if package is None:
        raise EntityNotFound(f"Package {package_id} not found")
    ctx.require_same_tenant(package)
    return (
        db.query(models.Payment)
        .filter(models.Payment.package_id == package_id)
        .order_by(models.Payment.payment_date, models.Payment.id)
        .all()
    )
