from decimal import Decimal

import pytest

from session_ledger import schemas
from session_ledger.errors import InvalidTierTable
from session_ledger.tiers import (
    GraduatedMethod,
    PercentageMethod,
    ProgressiveMethod,
    Tier,
    check_tier_table,
    find_tier,
)


def standard_tiers():
    return [
        Tier(min_sessions=1, max_sessions=30, percentage=Decimal("25")),
        Tier(min_sessions=31, max_sessions=60, percentage=Decimal("30")),
        Tier(min_sessions=61, percentage=Decimal("35")),
    ]


def test_valid_table_passes():
    assert check_tier_table(standard_tiers()) == standard_tiers()


def test_table_may_start_at_zero():
    tiers = [Tier(min_sessions=0, max_sessions=10), Tier(min_sessions=11)]
    assert check_tier_table(tiers) == tiers


def test_empty_table_rejected():
    with pytest.raises(InvalidTierTable):
        check_tier_table([])


def test_gap_rejected():
    tiers = standard_tiers()
    tiers[1] = Tier(min_sessions=32, max_sessions=60, percentage=Decimal("30"))
    with pytest.raises(InvalidTierTable, match="gap or overlap"):
        check_tier_table(tiers)


def test_overlap_rejected():
    tiers = standard_tiers()
    tiers[1] = Tier(min_sessions=30, max_sessions=60, percentage=Decimal("30"))
    with pytest.raises(InvalidTierTable):
        check_tier_table(tiers)


def test_unbounded_tier_must_be_last():
    tiers = [Tier(min_sessions=1), Tier(min_sessions=31, max_sessions=60)]
    with pytest.raises(InvalidTierTable, match="Only the last tier"):
        check_tier_table(tiers)


def test_last_tier_must_be_unbounded():
    tiers = [Tier(min_sessions=1, max_sessions=30), Tier(min_sessions=31, max_sessions=60)]
    with pytest.raises(InvalidTierTable, match="unbounded"):
        check_tier_table(tiers)


def test_first_tier_must_start_at_zero_or_one():
    with pytest.raises(InvalidTierTable):
        check_tier_table([Tier(min_sessions=5)])


def test_percentage_out_of_range_rejected():
    with pytest.raises(InvalidTierTable):
        check_tier_table([Tier(min_sessions=1, percentage=Decimal("120"))])


def test_tiered_methods_validate_on_construction():
    bad = [Tier(min_sessions=1, max_sessions=10), Tier(min_sessions=12)]
    with pytest.raises(InvalidTierTable):
        ProgressiveMethod(tiers=bad)
    with pytest.raises(InvalidTierTable):
        GraduatedMethod(tiers=bad)


def test_find_tier():
    tiers = standard_tiers()
    assert find_tier(tiers, 1).min_sessions == 1
    assert find_tier(tiers, 30).min_sessions == 1
    assert find_tier(tiers, 31).min_sessions == 31
    assert find_tier(tiers, 500).min_sessions == 61
    assert find_tier(tiers, 0) is None


def test_tier_label_and_rate():
    tier = Tier(min_sessions=61, percentage=Decimal("35"))
    assert tier.label() == "61-∞"
    assert tier.rate == Decimal("0.35")
    assert tier.is_flat_fee is False


def test_method_selector_is_discriminated_on_method():
    preview = schemas.CommissionPreview.model_validate(
        {"period": "2026-10", "method": {"method": "PERCENTAGE", "percentage": "20"}}
    )
    assert isinstance(preview.method, PercentageMethod)
    assert preview.method.percentage == Decimal("20")

    preview = schemas.CommissionPreview.model_validate({
        "period": "2026-10",
        "method": {
            "method": "GRADUATED",
            "tiers": [{"min_sessions": 1, "max_sessions": 30, "percentage": "25"}, {"min_sessions": 31}],
        },
    })
    assert isinstance(preview.method, GraduatedMethod)
    assert len(preview.method.tiers) == 2
