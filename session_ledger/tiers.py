"""
Tier Table and commission method selector.

A tier table is an ordered, gap-free, non-overlapping partition of session
counts. Tables are checked when they are built, so a malformed table never
reaches the commission engine through the normal constructors.
"""

from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from session_ledger.errors import InvalidTierTable


class Tier(BaseModel):
    min_sessions: int = Field(ge=0)
    max_sessions: Optional[int] = None  # None = unbounded
    percentage: Decimal = Decimal("0")
    flat_fee: Optional[Decimal] = None
    tier_bonus: Optional[Decimal] = None

    model_config = {"frozen": True, "from_attributes": True}

    @property
    def is_flat_fee(self) -> bool:
        return self.flat_fee is not None

    @property
    def rate(self) -> Decimal:
        return self.percentage / Decimal("100")

    def contains(self, session_count: int) -> bool:
        if session_count < self.min_sessions:
            return False
        return self.max_sessions is None or session_count <= self.max_sessions

    def label(self) -> str:
        upper = "∞" if self.max_sessions is None else str(self.max_sessions)
        return f"{self.min_sessions}-{upper}"


def check_tier_table(tiers: List[Tier]) -> List[Tier]:
    """Raise InvalidTierTable unless ``tiers`` is a well-formed table."""
    if not tiers:
        raise InvalidTierTable("Tier table is empty")

    # Counts start at 1; a first tier starting at 0 also owns the empty case
    if tiers[0].min_sessions not in (0, 1):
        raise InvalidTierTable(
            f"First tier must start at 0 or 1 sessions, got {tiers[0].min_sessions}"
        )

    for index, tier in enumerate(tiers):
        is_last = index == len(tiers) - 1
        if tier.max_sessions is None and not is_last:
            raise InvalidTierTable(f"Only the last tier may be unbounded (tier {tier.label()})")
        if tier.max_sessions is not None and tier.max_sessions < tier.min_sessions:
            raise InvalidTierTable(f"Tier {tier.label()} has max below min")
        if not Decimal("0") <= tier.percentage <= Decimal("100"):
            raise InvalidTierTable(f"Tier {tier.label()} percentage must be within 0-100")
        if tier.flat_fee is not None and tier.flat_fee < 0:
            raise InvalidTierTable(f"Tier {tier.label()} flat fee cannot be negative")
        if tier.tier_bonus is not None and tier.tier_bonus < 0:
            raise InvalidTierTable(f"Tier {tier.label()} bonus cannot be negative")
        if not is_last and tiers[index + 1].min_sessions != tier.max_sessions + 1:
            raise InvalidTierTable(
                f"Tiers {tier.label()} and {tiers[index + 1].label()} leave a gap or overlap"
            )

    if tiers[-1].max_sessions is not None:
        raise InvalidTierTable("Last tier must be unbounded")
    return tiers


def find_tier(tiers: List[Tier], session_count: int) -> Optional[Tier]:
    for tier in tiers:
        if tier.contains(session_count):
            return tier
    return None


# --------------------
# Method selector (closed tagged union)
# --------------------

class FlatFeeMethod(BaseModel):
    method: Literal["FLAT_FEE"] = "FLAT_FEE"
    fee_per_session: Decimal = Field(ge=0)


class PercentageMethod(BaseModel):
    method: Literal["PERCENTAGE"] = "PERCENTAGE"
    percentage: Decimal = Field(ge=0, le=100)


class _TieredMethod(BaseModel):
    tiers: List[Tier]

    @field_validator("tiers")
    @classmethod
    def validate_tiers(cls, v):
        return check_tier_table(v)


class ProgressiveMethod(_TieredMethod):
    method: Literal["PROGRESSIVE"] = "PROGRESSIVE"


class GraduatedMethod(_TieredMethod):
    method: Literal["GRADUATED"] = "GRADUATED"


CommissionMethod = Annotated[
    Union[FlatFeeMethod, PercentageMethod, ProgressiveMethod, GraduatedMethod],
    Field(discriminator="method"),
]
