import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Numeric,
    Boolean,
    Text,
    Enum,
    Index,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PaymentMethod(str, enum.Enum):
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    OTHER = "OTHER"


class SessionStatus(str, enum.Enum):
    AWAITING = "AWAITING"
    VALIDATED = "VALIDATED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class WarningKind(str, enum.Enum):
    OVER_DELIVERED = "OVER_DELIVERED"
    REMAINING_DRIFT = "REMAINING_DRIFT"
    OVERFLOW = "OVERFLOW"


class CalculationMethod(str, enum.Enum):
    FLAT_FEE = "FLAT_FEE"
    PERCENTAGE = "PERCENTAGE"
    PROGRESSIVE = "PROGRESSIVE"
    GRADUATED = "GRADUATED"


# ─────────────────────────────────────────────────────────────
# Tenant-side rows (owned by the surrounding application)
# ─────────────────────────────────────────────────────────────
class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Defaults for the untiered commission methods
    flat_fee_per_session = Column(Numeric(12, 2), nullable=True)
    flat_percentage = Column(Numeric(5, 2), nullable=True)

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)


class Trainer(Base):
    __tablename__ = "trainers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # NULL = paid by the organization's default profile
    commission_profile_id = Column(Integer, ForeignKey("commission_profiles.id"), nullable=True)

    sessions = relationship("Session", back_populates="trainer")
    commission_profile = relationship("CommissionProfile")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    location = relationship("Location")
    packages = relationship("Package", back_populates="client")


# ─────────────────────────────────────────────────────────────
# Ledger rows
# ─────────────────────────────────────────────────────────────
class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    total_value = Column(Numeric(12, 2), nullable=False)
    total_sessions = Column(Integer, nullable=False)
    # Fixed at sale time; sessions copy it and never see later repricing
    session_value = Column(Numeric(12, 2), nullable=False)
    # Display counter, recomputed from the session rows on every mutation
    remaining_sessions = Column(Integer, nullable=False)

    start_date = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    over_delivered = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    client = relationship("Client", back_populates="packages")
    payments = relationship("Payment", back_populates="package", order_by="Payment.payment_date")
    sessions = relationship("Session", back_populates="package")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime, nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.CARD)
    notes = Column(Text, nullable=True)

    # Who keyed the payment in, and up to two staff credited with the sale
    created_by_id = Column(Integer, nullable=True)
    sales_attributed_to_id = Column(Integer, ForeignKey("trainers.id"), nullable=True)
    sales_attributed_to_2_id = Column(Integer, ForeignKey("trainers.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    package = relationship("Package", back_populates="payments")


class Session(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_trainer_date", "trainer_id", "session_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    trainer_id = Column(Integer, ForeignKey("trainers.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    session_date = Column(DateTime, nullable=False, index=True)
    session_value = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text, nullable=True)

    validated = Column(Boolean, nullable=False, default=False)
    validated_at = Column(DateTime, nullable=True)
    cancelled = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime, nullable=True)
    # Client missed the session: stored cancelled but still uses a package slot
    no_show = Column(Boolean, nullable=False, default=False)

    # Set only while awaiting confirmation
    validation_token = Column(String(64), unique=True, nullable=True)
    validation_expiry = Column(DateTime, nullable=True)
    # The token the session was confirmed with, kept for idempotent re-validation
    redeemed_token = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    trainer = relationship("Trainer", back_populates="sessions")
    client = relationship("Client")
    location = relationship("Location")
    package = relationship("Package", back_populates="sessions")

    def status_at(self, now: datetime) -> SessionStatus:
        if self.cancelled:
            return SessionStatus.CANCELLED
        if self.validated:
            return SessionStatus.VALIDATED
        if self.validation_expiry is not None and now > self.validation_expiry:
            return SessionStatus.EXPIRED
        return SessionStatus.AWAITING

    def __repr__(self) -> str:
        return f"<Session id={self.id} trainer={self.trainer_id} package={self.package_id}>"


class CommissionProfile(Base):
    """A named pay plan; trainers are assigned one, or fall back to the default."""
    __tablename__ = "commission_profiles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_commission_profiles_org_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    calculation_method = Column(Enum(CalculationMethod), nullable=False, default=CalculationMethod.PROGRESSIVE)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Used by the untiered methods only
    flat_fee_per_session = Column(Numeric(12, 2), nullable=True)
    percentage = Column(Numeric(5, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    tiers = relationship(
        "CommissionTier",
        back_populates="profile",
        order_by="CommissionTier.min_sessions",
        cascade="all, delete-orphan",
    )


class CommissionTier(Base):
    __tablename__ = "commission_tiers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    # NULL = the organization-wide table
    profile_id = Column(Integer, ForeignKey("commission_profiles.id"), nullable=True, index=True)
    min_sessions = Column(Integer, nullable=False)
    max_sessions = Column(Integer, nullable=True)  # NULL = unbounded
    percentage = Column(Numeric(5, 2), nullable=False, default=0)
    flat_fee = Column(Numeric(12, 2), nullable=True)
    # Paid once per period to a trainer who reaches this tier
    tier_bonus = Column(Numeric(12, 2), nullable=True)

    profile = relationship("CommissionProfile", back_populates="tiers")


class CommissionCalculation(Base):
    """Commission of one trainer for a closed month, frozen as it was paid."""
    __tablename__ = "commission_calculations"
    __table_args__ = (
        UniqueConstraint("trainer_id", "period_start", name="uq_commission_calculations_trainer_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    trainer_id = Column(Integer, ForeignKey("trainers.id"), nullable=False)
    profile_id = Column(Integer, ForeignKey("commission_profiles.id"), nullable=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    calculation_method = Column(Enum(CalculationMethod), nullable=False)
    validated_sessions = Column(Integer, nullable=False)
    total_value = Column(Numeric(12, 2), nullable=False)
    tier_bonus = Column(Numeric(12, 2), nullable=False, default=0)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    # Full result, tier breakdown included
    snapshot = Column(JSON, nullable=False)
    calculated_at = Column(DateTime, nullable=False, default=utcnow)


class IntegrityWarning(Base):
    __tablename__ = "integrity_warnings"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    kind = Column(Enum(WarningKind), nullable=False)
    detail = Column(Text, nullable=False)
    used_sessions = Column(Integer, nullable=False)
    unlocked_sessions = Column(Integer, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
