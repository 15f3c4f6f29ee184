"""
Commission Calculation Engine

Turns a trainer's sessions for one calendar month into a commission payout.

Only validated, non-cancelled sessions are paid. Pending (unvalidated)
sessions are counted in ``total_sessions`` so callers can show them, but the
tier bracket and the dollar amount both come from the one validated set:
the session count and the value total are never taken from differently
filtered sets.

Methods:
- FLAT_FEE: validated sessions × fee per session
- PERCENTAGE: validated value × percentage
- PROGRESSIVE: the rate of the tier reached applies to all validated value
- GRADUATED: tax-bracket style, each tier's rate applies to the sessions
  that fall inside it

The tiered methods add the reached tier's bonus, once per period, on top.
Without an explicit method a trainer is paid by their commission profile,
or by the organization's default profile when none is assigned.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from session_ledger import crud, models, schemas
from session_ledger.context import TenantContext
from session_ledger.errors import (
    CommissionNotConfigured,
    DuplicateProfileName,
    EntityNotFound,
    LedgerError,
    NoTierMatchesSessionCount,
    PeriodNotEnded,
)
from session_ledger.models import CalculationMethod, as_naive_utc, utcnow
from session_ledger.money import ZERO, quantize_money, to_decimal
from session_ledger.tiers import (
    FlatFeeMethod,
    GraduatedMethod,
    PercentageMethod,
    ProgressiveMethod,
    Tier,
    check_tier_table,
    find_tier,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
TIERED_METHODS = ("PROGRESSIVE", "GRADUATED")


def _effective_rate(amount: Decimal, total_value: Decimal) -> Decimal:
    if total_value <= 0:
        return ZERO
    return quantize_money(amount / total_value * HUNDRED)


def _next_tier_at(tiers: List[Tier], current: Tier) -> Optional[int]:
    if current.max_sessions is None:
        return None
    return current.max_sessions + 1


def _tier_bonus(tier: Optional[Tier]) -> Decimal:
    if tier is None or tier.tier_bonus is None:
        return ZERO
    return quantize_money(tier.tier_bonus)


# --------------------
# Pure calculation
# --------------------

def _progressive(method: ProgressiveMethod, count: int, total_value: Decimal):
    tier = find_tier(method.tiers, count)
    if tier is None:
        raise NoTierMatchesSessionCount(
            f"No commission tier covers {count} sessions",
            session_count=count,
        )
    if tier.is_flat_fee:
        amount = quantize_money(tier.flat_fee * count)
        rate = _effective_rate(amount, total_value)
    else:
        amount = quantize_money(total_value * tier.rate)
        rate = tier.percentage
    return amount, rate, tier


def _graduated(method: GraduatedMethod, count: int, total_value: Decimal) -> Tuple[Decimal, List[schemas.TierBreakdown]]:
    average = total_value / count
    breakdown: List[schemas.TierBreakdown] = []
    allocated = ZERO
    amount = ZERO

    for tier in method.tiers:
        lower = max(tier.min_sessions, 1)
        if lower > count:
            break
        upper = count if tier.max_sessions is None else min(tier.max_sessions, count)
        in_bracket = max(0, upper - lower + 1)
        if in_bracket == 0:
            continue

        # The bracket holding the last session takes the remainder so bracket
        # values always add up to total_value.
        if upper == count:
            value = total_value - allocated
        else:
            value = quantize_money(average * in_bracket)
        allocated += value

        if tier.is_flat_fee:
            commission = quantize_money(tier.flat_fee * in_bracket)
        else:
            commission = quantize_money(value * tier.rate)
        amount += commission
        breakdown.append(schemas.TierBreakdown(
            tier=tier, sessions=in_bracket, value=value, commission=commission,
        ))

    return amount, breakdown


def compute_commission(
    trainer_id: int,
    sessions: Iterable,
    method,
    *,
    trainer_name: Optional[str] = None,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> schemas.TrainerCommission:
    """
    Pure projection over session rows (anything with ``validated``,
    ``cancelled`` and ``session_value``) for one trainer and one period.
    """
    live = [s for s in sessions if not s.cancelled]
    validated = [s for s in live if s.validated]
    count = len(validated)
    total_value = quantize_money(sum((to_decimal(s.session_value) for s in validated), ZERO))

    result = schemas.TrainerCommission(
        trainer_id=trainer_id,
        trainer_name=trainer_name,
        method=method.method,
        period_start=period_start,
        period_end=period_end,
        total_sessions=len(live),
        validated_sessions=count,
        total_value=total_value,
        commission_rate=ZERO,
        commission_amount=ZERO,
    )

    # Nothing validated yet is the ordinary empty case, not an error
    if count == 0:
        if isinstance(method, (ProgressiveMethod, GraduatedMethod)):
            result.tiers_applied = [] if isinstance(method, GraduatedMethod) else None
            result.next_tier_at = max(method.tiers[0].min_sessions, 1)
        elif isinstance(method, PercentageMethod):
            result.commission_rate = method.percentage
        return result

    if isinstance(method, FlatFeeMethod):
        amount = quantize_money(method.fee_per_session * count)
        result.commission_amount = amount
        result.commission_rate = _effective_rate(amount, total_value)

    elif isinstance(method, PercentageMethod):
        result.commission_amount = quantize_money(total_value * method.percentage / HUNDRED)
        result.commission_rate = method.percentage

    elif isinstance(method, ProgressiveMethod):
        amount, rate, tier = _progressive(method, count, total_value)
        result.tier_bonus = _tier_bonus(tier)
        result.commission_amount = quantize_money(amount + result.tier_bonus)
        result.commission_rate = rate
        result.tier_achieved = tier
        result.next_tier_at = _next_tier_at(method.tiers, tier)

    elif isinstance(method, GraduatedMethod):
        amount, breakdown = _graduated(method, count, total_value)
        result.commission_rate = _effective_rate(amount, total_value)
        result.tiers_applied = breakdown
        result.tier_achieved = find_tier(method.tiers, count)
        result.tier_bonus = _tier_bonus(result.tier_achieved)
        result.commission_amount = quantize_money(amount + result.tier_bonus)
        if result.tier_achieved is not None:
            result.next_tier_at = _next_tier_at(method.tiers, result.tier_achieved)

    else:
        raise CommissionNotConfigured(f"Unknown calculation method: {method!r}")

    return result


# --------------------
# Periods
# --------------------

def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """Half-open [first instant of the month, first instant of the next)."""
    if not 1 <= month <= 12:
        raise LedgerError(f"Invalid month {month}")
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def parse_period(period: str) -> Tuple[int, int]:
    """'2026-10' -> (2026, 10)"""
    try:
        year_text, month_text = period.split("-")
        year, month = int(year_text), int(month_text)
    except (AttributeError, ValueError):
        raise LedgerError(f"Period must look like YYYY-MM, got {period!r}")
    month_bounds(year, month)
    return year, month


# --------------------
# Tier table storage
# --------------------

def _tier_rows(ctx: TenantContext, tiers: List[Tier]) -> List[models.CommissionTier]:
    return [
        models.CommissionTier(
            organization_id=ctx.organization_id,
            min_sessions=tier.min_sessions,
            max_sessions=tier.max_sessions,
            percentage=tier.percentage,
            flat_fee=tier.flat_fee,
            tier_bonus=tier.tier_bonus,
        )
        for tier in tiers
    ]


def get_tier_table(db: Session, ctx: TenantContext) -> List[Tier]:
    """The organization-wide table, used when a method is asked for by name."""
    rows = (
        db.query(models.CommissionTier)
        .filter(
            models.CommissionTier.organization_id == ctx.organization_id,
            models.CommissionTier.profile_id.is_(None),
        )
        .order_by(models.CommissionTier.min_sessions)
        .all()
    )
    return [Tier.model_validate(row) for row in rows]


def replace_tier_table(db: Session, ctx: TenantContext, tiers: List[Tier]) -> List[Tier]:
    """Swap the organization's tier table; a bad table is rejected before any write."""
    tiers = check_tier_table(sorted(tiers, key=lambda t: t.min_sessions))
    try:
        db.query(models.CommissionTier).filter(
            models.CommissionTier.organization_id == ctx.organization_id,
            models.CommissionTier.profile_id.is_(None),
        ).delete(synchronize_session=False)
        db.add_all(_tier_rows(ctx, tiers))
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[tiers] organization=%s replaced with %s",
                ctx.organization_id, ", ".join(t.label() for t in tiers))
    return tiers


# --------------------
# Commission profiles
# --------------------

def create_profile(db: Session, ctx: TenantContext, profile_in: schemas.CommissionProfileCreate):
    """
    Add a named pay plan. Marking it the default takes the flag off the
    previous default profile.
    """
    duplicate = (
        db.query(models.CommissionProfile)
        .filter(
            models.CommissionProfile.organization_id == ctx.organization_id,
            models.CommissionProfile.name == profile_in.name,
        )
        .first()
    )
    if duplicate is not None:
        raise DuplicateProfileName(f"A commission profile named '{profile_in.name}' already exists")

    try:
        if profile_in.is_default:
            _clear_default(db, ctx)
        profile = models.CommissionProfile(
            organization_id=ctx.organization_id,
            name=profile_in.name,
            description=profile_in.description,
            calculation_method=profile_in.calculation_method,
            is_default=profile_in.is_default,
            is_active=True,
            flat_fee_per_session=profile_in.flat_fee_per_session,
            percentage=profile_in.percentage,
            tiers=_tier_rows(ctx, profile_in.tiers),
        )
        db.add(profile)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(profile)
    logger.info("[profile] created id=%s name=%r method=%s default=%s",
                profile.id, profile.name, profile.calculation_method.value, profile.is_default)
    return profile


def _clear_default(db: Session, ctx: TenantContext) -> None:
    db.query(models.CommissionProfile).filter(
        models.CommissionProfile.organization_id == ctx.organization_id,
        models.CommissionProfile.is_default == True,  # noqa: E712
    ).update({models.CommissionProfile.is_default: False}, synchronize_session="fetch")


def get_profiles(db: Session, ctx: TenantContext, active_only: bool = True):
    q = db.query(models.CommissionProfile).filter(
        models.CommissionProfile.organization_id == ctx.organization_id
    )
    if active_only:
        q = q.filter(models.CommissionProfile.is_active == True)  # noqa: E712
    return q.order_by(models.CommissionProfile.name).all()


def get_profile(db: Session, ctx: TenantContext, profile_id: int):
    profile = db.get(models.CommissionProfile, profile_id)
    if profile is None:
        raise EntityNotFound(f"Commission profile {profile_id} not found")
    ctx.require_same_tenant(profile)
    return profile


def deactivate_profile(db: Session, ctx: TenantContext, profile_id: int):
    """Soft delete. Trainers still pointing at it are paid by the default profile."""
    profile = get_profile(db, ctx, profile_id)
    profile.is_active = False
    profile.is_default = False
    db.commit()
    return profile


def assign_profile(db: Session, ctx: TenantContext, trainer_id: int, profile_id: Optional[int]):
    """Put a trainer on a profile, or back on the default with ``None``."""
    trainer = crud.get_trainer(db, ctx, trainer_id)
    if profile_id is not None:
        profile = get_profile(db, ctx, profile_id)
        if not profile.is_active:
            raise LedgerError(f"Commission profile '{profile.name}' is inactive")
    trainer.commission_profile_id = profile_id
    db.commit()
    db.refresh(trainer)
    logger.info("[profile] trainer=%s assigned profile=%s", trainer.id, profile_id)
    return trainer


def trainer_profile(db: Session, ctx: TenantContext, trainer: Optional[models.Trainer] = None):
    """The trainer's own active profile, else the organization's default one."""
    if trainer is not None:
        profile = trainer.commission_profile
        if profile is not None and profile.is_active:
            return profile
    return (
        db.query(models.CommissionProfile)
        .filter(
            models.CommissionProfile.organization_id == ctx.organization_id,
            models.CommissionProfile.is_default == True,  # noqa: E712
            models.CommissionProfile.is_active == True,  # noqa: E712
        )
        .first()
    )


# --------------------
# Method resolution
# --------------------

def _build_method(name: str, *, fee, percentage, tiers: List[Tier], source: str):
    if name == "FLAT_FEE":
        if fee is None:
            raise CommissionNotConfigured(f"No flat fee per session configured for {source}")
        return FlatFeeMethod(fee_per_session=to_decimal(fee))
    if name == "PERCENTAGE":
        if percentage is None:
            raise CommissionNotConfigured(f"No commission percentage configured for {source}")
        return PercentageMethod(percentage=to_decimal(percentage))
    if name in TIERED_METHODS:
        if not tiers:
            raise CommissionNotConfigured(f"No commission tiers configured for {source}")
        if name == "PROGRESSIVE":
            return ProgressiveMethod(tiers=tiers)
        return GraduatedMethod(tiers=tiers)
    raise CommissionNotConfigured(f"Unknown calculation method: {name!r}")


def method_from_profile(profile: models.CommissionProfile):
    return _build_method(
        profile.calculation_method.value,
        fee=profile.flat_fee_per_session,
        percentage=profile.percentage,
        tiers=[Tier.model_validate(row) for row in profile.tiers],
        source=f"profile '{profile.name}'",
    )


def resolve_method(
    db: Session,
    ctx: TenantContext,
    method_name: Optional[str] = None,
    *,
    trainer: Optional[models.Trainer] = None,
):
    """
    Returns ``(method, profile)``.

    A method name builds that method from the organization-wide settings and
    returns no profile. Without one the trainer's profile decides, falling
    back to the organization's default profile.
    """
    if method_name:
        org = db.get(models.Organization, ctx.organization_id)
        if org is None:
            raise EntityNotFound(f"Organization {ctx.organization_id} not found")
        name = method_name.upper()
        method = _build_method(
            name,
            fee=org.flat_fee_per_session,
            percentage=org.flat_percentage,
            tiers=get_tier_table(db, ctx) if name in TIERED_METHODS else [],
            source="the organization",
        )
        return method, None

    profile = trainer_profile(db, ctx, trainer)
    if profile is None:
        raise CommissionNotConfigured(
            "No calculation method given and no commission profile applies; "
            "assign the trainer a profile or mark one as the default"
        )
    return method_from_profile(profile), profile


# --------------------
# Store-backed entry points
# --------------------

def _period_sessions(db: Session, ctx: TenantContext, start: datetime, end: datetime, trainer_id=None):
    q = db.query(models.Session).filter(
        models.Session.organization_id == ctx.organization_id,
        models.Session.cancelled == False,  # noqa: E712
        models.Session.session_date >= start,
        models.Session.session_date < end,
    )
    if trainer_id is not None:
        q = q.filter(models.Session.trainer_id == trainer_id)
    return q.order_by(models.Session.session_date, models.Session.id).all()


def _trainer_result(trainer, sessions, method, profile, start, end) -> schemas.TrainerCommission:
    result = compute_commission(
        trainer.id, sessions, method,
        trainer_name=trainer.name, period_start=start, period_end=end,
    )
    if profile is not None:
        result.profile_id = profile.id
        result.profile_name = profile.name
    return result


def calculate_trainer_commission(
    db: Session,
    ctx: TenantContext,
    trainer_id: int,
    year: int,
    month: int,
    method=None,
    *,
    method_name: Optional[str] = None,
) -> schemas.TrainerCommission:
    """
    Commission of one trainer for one calendar month. Pass a method object,
    the name of a method configured for the organization, or neither to use
    the trainer's commission profile.
    """
    trainer = db.get(models.Trainer, trainer_id)
    if trainer is None:
        raise EntityNotFound(f"Trainer {trainer_id} not found")
    ctx.require_same_tenant(trainer)
    profile = None
    if method is None:
        method, profile = resolve_method(db, ctx, method_name, trainer=trainer)

    start, end = month_bounds(year, month)
    sessions = _period_sessions(db, ctx, start, end, trainer_id=trainer.id)
    result = _trainer_result(trainer, sessions, method, profile, start, end)
    logger.info(
        "[commission] trainer=%s period=%04d-%02d method=%s validated=%s amount=%s",
        trainer.id, year, month, result.method, result.validated_sessions, result.commission_amount,
    )
    return result


def calculate_monthly_commissions(
    db: Session,
    ctx: TenantContext,
    year: int,
    month: int,
    method=None,
    *,
    method_name: Optional[str] = None,
) -> List[schemas.TrainerCommission]:
    """Commission of every active trainer of the organization for one month."""
    shared = None
    if method is not None:
        shared = (method, None)
    elif method_name:
        shared = resolve_method(db, ctx, method_name)
    start, end = month_bounds(year, month)

    by_trainer = {}
    for session in _period_sessions(db, ctx, start, end):
        by_trainer.setdefault(session.trainer_id, []).append(session)

    trainers = (
        db.query(models.Trainer)
        .filter(
            models.Trainer.organization_id == ctx.organization_id,
            models.Trainer.is_active == True,  # noqa: E712
        )
        .order_by(models.Trainer.name)
        .all()
    )
    results = []
    for trainer in trainers:
        trainer_method, profile = shared or resolve_method(db, ctx, trainer=trainer)
        results.append(_trainer_result(
            trainer, by_trainer.get(trainer.id, []), trainer_method, profile, start, end,
        ))
    return results


# --------------------
# Closed periods
# --------------------

def closed_period(db: Session, ctx: TenantContext, year: int, month: int) -> List[schemas.TrainerCommission]:
    """Snapshots stored when the month was closed; empty while it is open."""
    start, _ = month_bounds(year, month)
    rows = (
        db.query(models.CommissionCalculation)
        .filter(
            models.CommissionCalculation.organization_id == ctx.organization_id,
            models.CommissionCalculation.period_start == start,
        )
        .order_by(models.CommissionCalculation.id)
        .all()
    )
    return [schemas.TrainerCommission.model_validate(row.snapshot) for row in rows]


def close_period(
    db: Session,
    ctx: TenantContext,
    year: int,
    month: int,
    *,
    method_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[schemas.TrainerCommission]:
    """
    Freeze every active trainer's commission for a month that has ended.

    Closing an already closed month returns the stored snapshots, so later
    edits to tiers or profiles never change what a closed month paid.
    """
    now = as_naive_utc(now) or utcnow()
    start, end = month_bounds(year, month)
    if now < end:
        raise PeriodNotEnded(
            f"{year:04d}-{month:02d} has not ended yet",
            period_end=end.isoformat(),
        )

    existing = closed_period(db, ctx, year, month)
    if existing:
        return existing

    results = calculate_monthly_commissions(db, ctx, year, month, method_name=method_name)
    try:
        for result in results:
            db.add(models.CommissionCalculation(
                organization_id=ctx.organization_id,
                trainer_id=result.trainer_id,
                profile_id=result.profile_id,
                period_start=start,
                period_end=end,
                calculation_method=CalculationMethod(result.method),
                validated_sessions=result.validated_sessions,
                total_value=result.total_value,
                tier_bonus=result.tier_bonus,
                commission_amount=result.commission_amount,
                snapshot=result.model_dump(mode="json"),
                calculated_at=now,
            ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "[commission] organization=%s closed %04d-%02d for %s trainers, total=%s",
        ctx.organization_id, year, month, len(results),
        quantize_money(sum((r.commission_amount for r in results), ZERO)),
    )
    return results
