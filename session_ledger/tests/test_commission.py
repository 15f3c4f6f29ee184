from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from session_ledger import commission, crud, models, schemas
from session_ledger.errors import (
    CommissionNotConfigured,
    CrossTenantMismatch,
    DuplicateProfileName,
    InvalidTierTable,
    LedgerError,
    NoTierMatchesSessionCount,
    PeriodNotEnded,
)
from session_ledger.tiers import (
    FlatFeeMethod,
    GraduatedMethod,
    PercentageMethod,
    ProgressiveMethod,
    Tier,
)


def standard_tiers():
    return [
        Tier(min_sessions=1, max_sessions=30, percentage=Decimal("25")),
        Tier(min_sessions=31, max_sessions=60, percentage=Decimal("30")),
        Tier(min_sessions=61, percentage=Decimal("35")),
    ]


def rows(count, value="100", validated=True, cancelled=False):
    return [
        SimpleNamespace(validated=validated, cancelled=cancelled, session_value=Decimal(value))
        for _ in range(count)
    ]


# --------------------
# Pure calculation
# --------------------

def test_progressive_applies_reached_tier_to_all_value():
    result = commission.compute_commission(1, rows(45), ProgressiveMethod(tiers=standard_tiers()))
    assert result.validated_sessions == 45
    assert result.total_value == Decimal("4500.00")
    assert result.tier_achieved.min_sessions == 31
    assert result.commission_rate == Decimal("30")
    assert result.commission_amount == Decimal("1350.00")
    assert result.next_tier_at == 61


def test_graduated_applies_each_rate_to_its_bracket():
    result = commission.compute_commission(1, rows(45), GraduatedMethod(tiers=standard_tiers()))
    assert result.commission_amount == Decimal("1200.00")
    assert [(b.sessions, b.value, b.commission) for b in result.tiers_applied] == [
        (30, Decimal("3000.00"), Decimal("750.00")),
        (15, Decimal("1500.00"), Decimal("450.00")),
    ]
    assert result.commission_rate == Decimal("26.67")


def test_graduated_breakdown_reconciles_with_uneven_values():
    sessions = rows(4, "33.33") + rows(3, "41.17") + rows(2, "19.99")
    tiers = [
        Tier(min_sessions=0, max_sessions=2, percentage=Decimal("12.5")),
        Tier(min_sessions=3, max_sessions=5, percentage=Decimal("17.3")),
        Tier(min_sessions=6, percentage=Decimal("33.3")),
    ]
    result = commission.compute_commission(1, sessions, GraduatedMethod(tiers=tiers))
    assert sum(b.commission for b in result.tiers_applied) == result.commission_amount
    assert sum(b.value for b in result.tiers_applied) == result.total_value
    assert sum(b.sessions for b in result.tiers_applied) == 9


def test_progressive_flat_fee_tier():
    tiers = [
        Tier(min_sessions=1, max_sessions=10, flat_fee=Decimal("20")),
        Tier(min_sessions=11, flat_fee=Decimal("30")),
    ]
    result = commission.compute_commission(1, rows(12), ProgressiveMethod(tiers=tiers))
    assert result.commission_amount == Decimal("360.00")


def test_flat_fee_method():
    result = commission.compute_commission(1, rows(3), FlatFeeMethod(fee_per_session=Decimal("25")))
    assert result.commission_amount == Decimal("75.00")
    assert result.commission_rate == Decimal("25.00")


def test_percentage_method():
    result = commission.compute_commission(1, rows(3), PercentageMethod(percentage=Decimal("20")))
    assert result.commission_amount == Decimal("60.00")
    assert result.commission_rate == Decimal("20")


def test_zero_validated_sessions_pays_nothing():
    for method in (
        ProgressiveMethod(tiers=standard_tiers()),
        GraduatedMethod(tiers=standard_tiers()),
        FlatFeeMethod(fee_per_session=Decimal("25")),
    ):
        result = commission.compute_commission(1, [], method)
        assert result.commission_amount == Decimal("0")
        assert result.validated_sessions == 0


def test_only_validated_live_sessions_are_paid():
    sessions = rows(2) + rows(3, validated=False) + rows(4, cancelled=True)
    result = commission.compute_commission(1, sessions, ProgressiveMethod(tiers=standard_tiers()))
    assert result.total_sessions == 5
    assert result.validated_sessions == 2
    assert result.total_value == Decimal("200.00")
    assert result.commission_amount == Decimal("50.00")


def test_progressive_without_matching_tier_is_a_configuration_error():
    # Bypasses validation to simulate a table stored before validation existed
    method = ProgressiveMethod.model_construct(tiers=[Tier(min_sessions=1, max_sessions=10)])
    with pytest.raises(NoTierMatchesSessionCount):
        commission.compute_commission(1, rows(11), method)


def test_month_bounds_and_period_parsing():
    assert commission.month_bounds(2026, 12) == (datetime(2026, 12, 1), datetime(2027, 1, 1))
    assert commission.parse_period("2026-02") == (2026, 2)
    with pytest.raises(LedgerError):
        commission.parse_period("2026-13")
    with pytest.raises(LedgerError):
        commission.parse_period("October")


# --------------------
# Store-backed
# --------------------

def test_trainer_commission_for_month(db, ctx, trainer, make_package, add_session):
    package = make_package(total_value="4500", total_sessions=45)
    for day in range(1, 31):
        add_session(package, session_date=datetime(2026, 10, day, 10))
    add_session(package, session_date=datetime(2026, 10, 31, 10), validated=False)
    add_session(package, session_date=datetime(2026, 11, 1, 0, 0))  # next month

    commission.replace_tier_table(db, ctx, standard_tiers())
    result = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="progressive")
    assert result.trainer_name == "Rachel"
    assert result.total_sessions == 31
    assert result.validated_sessions == 30
    assert result.commission_amount == Decimal("750.00")
    assert result.next_tier_at == 31


def test_method_resolved_from_organization_defaults(db, ctx, trainer, make_package, add_session):
    package = make_package()
    add_session(package, session_date=datetime(2026, 10, 3, 10))
    result = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="FLAT_FEE")
    assert result.commission_amount == Decimal("25.00")
    result = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="PERCENTAGE")
    assert result.commission_amount == Decimal("20.00")


def test_tiered_method_without_tiers_is_not_configured(db, ctx, trainer):
    with pytest.raises(CommissionNotConfigured):
        commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="GRADUATED")


def test_cross_tenant_trainer_rejected(db, other_ctx, trainer):
    with pytest.raises(CrossTenantMismatch):
        commission.calculate_trainer_commission(
            db, other_ctx, trainer.id, 2026, 10, FlatFeeMethod(fee_per_session=Decimal("10"))
        )


def test_monthly_commissions_cover_every_active_trainer(db, ctx, trainer, make_package, add_session):
    idle = crud.create_trainer(db, ctx, schemas.TrainerCreate(name="Lindsay"))
    package = make_package()
    add_session(package, session_date=datetime(2026, 10, 3, 10))
    results = commission.calculate_monthly_commissions(
        db, ctx, 2026, 10, PercentageMethod(percentage=Decimal("10"))
    )
    by_name = {r.trainer_name: r for r in results}
    assert by_name["Rachel"].commission_amount == Decimal("10.00")
    assert by_name["Lindsay"].trainer_id == idle.id
    assert by_name["Lindsay"].commission_amount == Decimal("0")


def test_invalid_tier_table_leaves_existing_table(db, ctx):
    commission.replace_tier_table(db, ctx, standard_tiers())
    with pytest.raises(InvalidTierTable):
        commission.replace_tier_table(db, ctx, [Tier(min_sessions=1, max_sessions=10), Tier(min_sessions=20)])
    assert commission.get_tier_table(db, ctx) == standard_tiers()


# --------------------
# Tier bonus
# --------------------

def bonus_tiers():
    return [
        Tier(min_sessions=1, max_sessions=30, percentage=Decimal("25")),
        Tier(min_sessions=31, max_sessions=60, percentage=Decimal("30"), tier_bonus=Decimal("100")),
        Tier(min_sessions=61, percentage=Decimal("35"), tier_bonus=Decimal("250")),
    ]


def test_progressive_adds_bonus_of_reached_tier():
    result = commission.compute_commission(1, rows(45), ProgressiveMethod(tiers=bonus_tiers()))
    assert result.tier_bonus == Decimal("100.00")
    assert result.commission_amount == Decimal("1450.00")
    assert result.commission_rate == Decimal("30")


def test_graduated_adds_only_the_top_bonus():
    result = commission.compute_commission(1, rows(70), GraduatedMethod(tiers=bonus_tiers()))
    # 3000 x 25% + 3000 x 30% + 1000 x 35%, then the 61+ bonus once
    assert result.tier_bonus == Decimal("250.00")
    assert result.commission_amount == Decimal("2250.00")
    assert sum(b.commission for b in result.tiers_applied) == Decimal("2000.00")


def test_no_bonus_below_first_bonus_tier():
    result = commission.compute_commission(1, rows(10), ProgressiveMethod(tiers=bonus_tiers()))
    assert result.tier_bonus == Decimal("0")
    assert result.commission_amount == Decimal("250.00")


def test_negative_tier_bonus_rejected():
    with pytest.raises(InvalidTierTable, match="bonus"):
        ProgressiveMethod(tiers=[Tier(min_sessions=1, tier_bonus=Decimal("-5"))])


# --------------------
# Commission profiles
# --------------------

def make_profile(db, ctx, name, **kwargs):
    return commission.create_profile(db, ctx, schemas.CommissionProfileCreate(name=name, **kwargs))


def test_profile_needs_its_method_settings():
    with pytest.raises(ValidationError):
        schemas.CommissionProfileCreate(name="Flat", calculation_method="FLAT_FEE")
    with pytest.raises(ValidationError):
        schemas.CommissionProfileCreate(name="Share", calculation_method="PERCENTAGE")
    with pytest.raises(InvalidTierTable):
        schemas.CommissionProfileCreate(
            name="Broken", calculation_method="PROGRESSIVE",
            tiers=[Tier(min_sessions=1, max_sessions=10), Tier(min_sessions=20)],
        )


def test_trainer_paid_by_assigned_profile_or_default(db, ctx, trainer, make_package, add_session):
    lindsay = crud.create_trainer(db, ctx, schemas.TrainerCreate(name="Lindsay"))
    make_profile(db, ctx, "Standard", calculation_method="FLAT_FEE",
                 flat_fee_per_session=Decimal("10"), is_default=True)
    senior = make_profile(db, ctx, "Senior", calculation_method="PERCENTAGE", percentage=Decimal("50"))
    commission.assign_profile(db, ctx, trainer.id, senior.id)

    package = make_package()
    add_session(package, session_date=datetime(2026, 10, 3, 10))
    add_session(package, session_date=datetime(2026, 10, 4, 10), trainer_id=lindsay.id)

    rachel = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10)
    assert rachel.method == "PERCENTAGE"
    assert rachel.profile_name == "Senior"
    assert rachel.commission_amount == Decimal("50.00")

    other = commission.calculate_trainer_commission(db, ctx, lindsay.id, 2026, 10)
    assert other.method == "FLAT_FEE"
    assert other.profile_name == "Standard"
    assert other.commission_amount == Decimal("10.00")

    by_name = {r.trainer_name: r for r in commission.calculate_monthly_commissions(db, ctx, 2026, 10)}
    assert by_name["Rachel"].commission_amount == Decimal("50.00")
    assert by_name["Lindsay"].commission_amount == Decimal("10.00")


def test_method_name_overrides_profile(db, ctx, trainer, make_package, add_session):
    make_profile(db, ctx, "Standard", calculation_method="FLAT_FEE",
                 flat_fee_per_session=Decimal("10"), is_default=True)
    add_session(make_package(), session_date=datetime(2026, 10, 3, 10))
    result = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="FLAT_FEE")
    assert result.commission_amount == Decimal("25.00")
    assert result.profile_id is None


def test_no_method_and_no_profile_is_not_configured(db, ctx, trainer):
    with pytest.raises(CommissionNotConfigured, match="profile"):
        commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10)


def test_deactivated_profile_falls_back_to_default(db, ctx, trainer):
    make_profile(db, ctx, "Standard", calculation_method="FLAT_FEE",
                 flat_fee_per_session=Decimal("10"), is_default=True)
    senior = make_profile(db, ctx, "Senior", calculation_method="PERCENTAGE", percentage=Decimal("50"))
    commission.assign_profile(db, ctx, trainer.id, senior.id)
    commission.deactivate_profile(db, ctx, senior.id)

    assert commission.trainer_profile(db, ctx, trainer).name == "Standard"
    with pytest.raises(LedgerError, match="inactive"):
        commission.assign_profile(db, ctx, trainer.id, senior.id)


def test_new_default_replaces_previous(db, ctx):
    first = make_profile(db, ctx, "Standard", calculation_method="FLAT_FEE",
                         flat_fee_per_session=Decimal("10"), is_default=True)
    make_profile(db, ctx, "New standard", calculation_method="PERCENTAGE",
                 percentage=Decimal("15"), is_default=True)
    db.refresh(first)
    assert first.is_default is False
    assert commission.trainer_profile(db, ctx).name == "New standard"


def test_duplicate_profile_name_rejected(db, ctx):
    make_profile(db, ctx, "Standard", calculation_method="PERCENTAGE", percentage=Decimal("15"))
    with pytest.raises(DuplicateProfileName):
        make_profile(db, ctx, " Standard ", calculation_method="PERCENTAGE", percentage=Decimal("20"))


def test_profile_tiers_kept_apart_from_organization_table(db, ctx, trainer, make_package, add_session):
    commission.replace_tier_table(db, ctx, standard_tiers())
    profile = make_profile(db, ctx, "Bonus plan", calculation_method="PROGRESSIVE",
                           tiers=list(reversed(bonus_tiers())))
    assert [t.min_sessions for t in profile.tiers] == [1, 31, 61]
    assert profile.tiers[1].tier_bonus == Decimal("100.00")

    # Replacing the organization table leaves the profile's tiers alone
    commission.replace_tier_table(db, ctx, [Tier(min_sessions=1, percentage=Decimal("5"))])
    db.refresh(profile)
    assert len(profile.tiers) == 3
    assert len(commission.get_tier_table(db, ctx)) == 1

    commission.assign_profile(db, ctx, trainer.id, profile.id)
    package = make_package(total_value="4500", total_sessions=45)
    for day in range(1, 32):
        add_session(package, session_date=datetime(2026, 10, day, 10))
    result = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10)
    assert result.validated_sessions == 31
    assert result.tier_bonus == Decimal("100.00")
    assert result.commission_amount == Decimal("1030.00")


def test_profile_from_other_tenant_rejected(db, ctx, other_ctx, trainer):
    foreign = make_profile(db, other_ctx, "Theirs", calculation_method="PERCENTAGE", percentage=Decimal("15"))
    with pytest.raises(CrossTenantMismatch):
        commission.assign_profile(db, ctx, trainer.id, foreign.id)


# --------------------
# Closed periods
# --------------------

def test_cannot_close_a_month_that_has_not_ended(db, ctx, trainer):
    with pytest.raises(PeriodNotEnded):
        commission.close_period(db, ctx, 2026, 10, method_name="FLAT_FEE", now=datetime(2026, 10, 31, 23, 59))


def test_closed_month_is_frozen(db, ctx, trainer, make_package, add_session):
    package = make_package()
    add_session(package, session_date=datetime(2026, 10, 3, 10))
    after_month = datetime(2026, 11, 2, 9)

    closed = commission.close_period(db, ctx, 2026, 10, method_name="FLAT_FEE", now=after_month)
    assert [r.commission_amount for r in closed] == [Decimal("25.00")]
    assert commission.closed_period(db, ctx, 2026, 11) == []

    # A late session and a new fee change the live figure only
    add_session(package, session_date=datetime(2026, 10, 20, 10))
    org = db.get(models.Organization, ctx.organization_id)
    org.flat_fee_per_session = Decimal("40")
    db.commit()

    live = commission.calculate_trainer_commission(db, ctx, trainer.id, 2026, 10, method_name="FLAT_FEE")
    assert live.commission_amount == Decimal("80.00")

    [stored] = commission.closed_period(db, ctx, 2026, 10)
    assert stored.trainer_name == "Rachel"
    assert stored.validated_sessions == 1
    assert stored.commission_amount == Decimal("25.00")

    again = commission.close_period(db, ctx, 2026, 10, method_name="FLAT_FEE", now=after_month)
    assert [r.commission_amount for r in again] == [Decimal("25.00")]
