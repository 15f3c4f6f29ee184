from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from session_ledger import crud, integrity, payments, schemas
from session_ledger.errors import (
    CrossTenantMismatch,
    EntityNotFound,
    ExceedsRemainingBalance,
    InvalidPaymentAmount,
)
from session_ledger.models import PaymentMethod, WarningKind
from session_ledger.notifications import Outbox, PackageOverDelivered, SessionsUnlocked

from conftest import NOW


def test_create_package_fixes_session_value(db, ctx, make_package):
    package = make_package(total_value="1000", total_sessions=3)
    assert package.session_value == Decimal("333.33")
    assert package.remaining_sessions == 3
    assert package.is_active is True
    assert payments.list_payments(db, ctx, package.id) == []


def test_create_package_with_initial_payment(db, ctx, make_package):
    package = make_package(paid="500")
    [payment] = payments.list_payments(db, ctx, package.id)
    assert payment.amount == Decimal("500.00")
    assert payment.notes == "Initial payment"
    assert payments.get_package_summary(db, ctx, package.id).unlocked_sessions == 5


def test_initial_payment_cannot_exceed_package_value(db, ctx, make_package):
    with pytest.raises(ExceedsRemainingBalance):
        make_package(total_value="100", total_sessions=1, paid="150")
    assert crud.get_packages(db, ctx) == []


def test_package_duration_sets_expiry(db, make_package):
    package = make_package(
        start_date=datetime(2026, 1, 31, 12), duration_value=1, duration_unit="MONTHS"
    )
    assert package.expires_at == datetime(2026, 2, 28, 12)


def test_calculate_expiry_date():
    start = datetime(2028, 1, 31)
    assert crud.calculate_expiry_date(start, 1, "MONTHS") == datetime(2028, 2, 29)
    assert crud.calculate_expiry_date(start, 12, "MONTHS") == datetime(2029, 1, 31)
    assert crud.calculate_expiry_date(start, 2, "WEEKS") == datetime(2028, 2, 14)
    assert crud.calculate_expiry_date(start, 10, "DAYS") == datetime(2028, 2, 10)


def test_record_payment_reports_unlocked_sessions(db, ctx, make_package):
    package = make_package()
    outbox = Outbox()

    recorded = payments.record_payment(
        db, ctx, package.id, Decimal("500"), payment_method=PaymentMethod.BANK_TRANSFER, now=NOW, outbox=outbox
    )
    assert recorded.newly_unlocked_sessions == 5
    assert recorded.summary.unlocked_sessions == 5
    assert recorded.summary.remaining_balance == Decimal("700.00")
    assert recorded.payment.payment_method == PaymentMethod.BANK_TRANSFER

    [event] = outbox.events
    assert isinstance(event, SessionsUnlocked)
    assert event.newly_unlocked == 5

    recorded = payments.record_payment(db, ctx, package.id, Decimal("50"), now=NOW, outbox=outbox)
    assert recorded.newly_unlocked_sessions == 0
    assert len(outbox) == 1


def test_payment_must_be_positive(db, ctx, make_package):
    package = make_package()
    with pytest.raises(InvalidPaymentAmount):
        payments.record_payment(db, ctx, package.id, Decimal("0"))
    with pytest.raises(InvalidPaymentAmount):
        payments.record_payment(db, ctx, package.id, Decimal("-10"))


def test_sub_cent_payment_rejected(db, ctx, make_package):
    package = make_package()
    with pytest.raises(InvalidPaymentAmount):
        payments.record_payment(db, ctx, package.id, Decimal("0.004"))
    assert payments.list_payments(db, ctx, package.id) == []

    payment = payments.record_payment(db, ctx, package.id, Decimal("0.005")).payment
    assert payment.amount == Decimal("0.01")


def test_payment_cannot_exceed_remaining_balance(db, ctx, make_package):
    package = make_package(paid="1000")
    with pytest.raises(ExceedsRemainingBalance) as excinfo:
        payments.record_payment(db, ctx, package.id, Decimal("200.02"))
    assert "$200.00" in str(excinfo.value)

    # A cent of rounding slack is tolerated
    payments.record_payment(db, ctx, package.id, Decimal("200.01"))
    with pytest.raises(ExceedsRemainingBalance):
        payments.record_payment(db, ctx, package.id, Decimal("1"))


def test_sales_attribution_must_be_same_tenant(db, ctx, other_ctx, make_package):
    package = make_package()
    outsider = crud.create_trainer(db, other_ctx, schemas.TrainerCreate(name="Outsider"))
    with pytest.raises(CrossTenantMismatch):
        payments.record_payment(db, ctx, package.id, Decimal("100"), sales_attributed_to_id=outsider.id)


def test_record_payment_on_foreign_package(db, other_ctx, make_package):
    package = make_package()
    with pytest.raises(CrossTenantMismatch):
        payments.record_payment(db, other_ctx, package.id, Decimal("100"))


def test_list_payments_in_date_order(db, ctx, make_package):
    package = make_package()
    payments.record_payment(db, ctx, package.id, Decimal("200"), payment_date=NOW + timedelta(days=2))
    payments.record_payment(db, ctx, package.id, Decimal("100"), payment_date=NOW)
    listed = payments.list_payments(db, ctx, package.id)
    assert [p.amount for p in listed] == [Decimal("100.00"), Decimal("200.00")]


def test_delete_payment_flags_over_delivery(db, ctx, make_package, add_session):
    package = make_package()
    recorded = payments.record_payment(db, ctx, package.id, Decimal("500"), now=NOW)
    for _ in range(5):
        add_session(package)
    outbox = Outbox()

    deleted = payments.delete_payment(db, ctx, recorded.payment.id, outbox=outbox)
    assert deleted.over_delivered is True
    assert deleted.summary.unlocked_sessions == 0
    assert "5 sessions have been delivered" in deleted.warning

    db.refresh(package)
    assert package.over_delivered is True
    [warning] = integrity.list_warnings(db, ctx)
    assert warning.kind == WarningKind.OVER_DELIVERED
    assert warning.used_sessions == 5
    assert isinstance(outbox.events[0], PackageOverDelivered)

    # Paying again clears the flag
    payments.record_payment(db, ctx, package.id, Decimal("500"), now=NOW)
    db.refresh(package)
    assert package.over_delivered is False


def test_delete_payment_without_over_delivery(db, ctx, make_package):
    package = make_package()
    recorded = payments.record_payment(db, ctx, package.id, Decimal("500"), now=NOW)
    deleted = payments.delete_payment(db, ctx, recorded.payment.id)
    assert deleted.over_delivered is False
    assert deleted.warning is None
    assert integrity.list_warnings(db, ctx) == []


def test_delete_unknown_payment(db, ctx):
    with pytest.raises(EntityNotFound):
        payments.delete_payment(db, ctx, 999)
