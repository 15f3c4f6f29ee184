"""
Payment Ledger & Unlock Calculator.

Sessions of a package unlock proportionally to the money received, rounding
down so a trainer can never deliver a session the client has not fully paid
for at the package's per-session rate. Everything here is pure; the
database-facing side lives in ``payments.py``.
"""

from dataclasses import dataclass
from decimal import Decimal

from session_ledger.money import ZERO, quantize_money, quantize_money_up, to_decimal


def unlocked_sessions(paid_amount, total_value, total_sessions: int) -> int:
    """
    floor(total_sessions × min(paid, total_value) / total_value), clamped to
    [0, total_sessions]. A package with no price is fully unlocked.
    """
    if total_sessions <= 0:
        return 0
    paid = to_decimal(paid_amount)
    total = to_decimal(total_value)
    if total <= 0:
        return total_sessions

    paid = min(max(paid, ZERO), total)
    # Operands are non-negative, so Decimal floor division is a true floor
    unlocked = int((Decimal(total_sessions) * paid) // total)
    return max(0, min(total_sessions, unlocked))


def sessions_unlocked_by_payment(current_paid, payment_amount, total_value, total_sessions: int) -> int:
    """How many additional sessions a payment of ``payment_amount`` unlocks."""
    before = unlocked_sessions(current_paid, total_value, total_sessions)
    after = unlocked_sessions(to_decimal(current_paid) + to_decimal(payment_amount), total_value, total_sessions)
    return after - before


def available_capacity(unlocked: int, used: int) -> int:
    return max(0, unlocked - used)


def payment_needed_for_next_session(paid_amount, total_value, total_sessions: int, used: int) -> Decimal:
    """
    Smallest additional payment (rounded up to the cent) that unlocks one
    more session than is currently used. Zero when capacity already exists;
    zero as well once every session is used, since no payment helps then.
    """
    total = to_decimal(total_value)
    paid = to_decimal(paid_amount)
    if total_sessions <= 0 or used >= total_sessions or total <= 0:
        return ZERO
    if unlocked_sessions(paid, total, total_sessions) > used:
        return ZERO
    required = total * Decimal(used + 1) / Decimal(total_sessions)
    return max(ZERO, quantize_money_up(required - paid))


@dataclass(frozen=True)
class LedgerSummary:
    total_value: Decimal
    paid_amount: Decimal
    remaining_balance: Decimal
    total_sessions: int
    unlocked_sessions: int
    used_sessions: int
    available_sessions: int
    is_fully_paid: bool
    payment_progress: Decimal  # 0-100

    @property
    def over_delivered(self) -> bool:
        return self.used_sessions > self.unlocked_sessions

    @classmethod
    def build(cls, total_value, total_sessions: int, paid_amount, used_sessions: int) -> "LedgerSummary":
        total = to_decimal(total_value)
        paid = to_decimal(paid_amount)
        unlocked = unlocked_sessions(paid, total, total_sessions)
        if total > 0:
            progress = min(Decimal("100"), quantize_money(paid / total * 100))
        else:
            progress = Decimal("100")
        return cls(
            total_value=total,
            paid_amount=paid,
            remaining_balance=max(ZERO, total - paid),
            total_sessions=total_sessions,
            unlocked_sessions=unlocked,
            used_sessions=used_sessions,
            available_sessions=available_capacity(unlocked, used_sessions),
            is_fully_paid=paid >= total,
            payment_progress=progress,
        )
