from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from session_ledger.models import CalculationMethod, PaymentMethod, SessionStatus, WarningKind
from session_ledger.tiers import CommissionMethod, Tier, check_tier_table

# --------------------
# Trainer & Client Schemas
# --------------------

class TrainerCreate(BaseModel):
    name: str
    email: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Trainer name is required and cannot be empty')
        return v.strip()


class Trainer(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    is_active: bool
    created_at: datetime
    commission_profile_id: Optional[int] = None

    model_config = {
        "from_attributes": True
    }


class ClientCreate(BaseModel):
    name: str
    email: Optional[str] = None
    location_id: Optional[int] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Client name is required and cannot be empty')
        return v.strip()


class Client(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    location_id: Optional[int] = None
    is_active: bool

    model_config = {
        "from_attributes": True
    }


# --------------------
# Session Schemas
# --------------------

class SessionCreate(BaseModel):
    trainer_id: int
    client_id: int
    package_id: int
    location_id: Optional[int] = None
    session_date: datetime
    notes: Optional[str] = None
    is_no_show: bool = False

    @field_validator('notes')
    @classmethod
    def strip_notes(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None


class Session(BaseModel):
    id: int
    trainer_id: int
    client_id: int
    package_id: int
    location_id: Optional[int] = None
    session_date: datetime
    session_value: Decimal
    notes: Optional[str] = None
    validated: bool
    validated_at: Optional[datetime] = None
    cancelled: bool
    cancelled_at: Optional[datetime] = None
    no_show: bool = False
    validation_expiry: Optional[datetime] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class SessionListItem(Session):
    status: SessionStatus


class ValidationStatus(BaseModel):
    status: Literal["pending", "already_validated", "expired", "not_found"]
    validated_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    session_id: Optional[int] = None
    session_date: Optional[datetime] = None
    session_value: Optional[Decimal] = None
    trainer_name: Optional[str] = None
    location_name: Optional[str] = None
    help: Optional[str] = None


class ValidationResult(BaseModel):
    session_id: int
    validated_at: datetime
    already_validated: bool = False


# --------------------
# Package & Payment Schemas
# --------------------

class PackageCreate(BaseModel):
    client_id: int
    name: str
    total_value: Decimal = Field(ge=0)
    total_sessions: int = Field(gt=0)
    start_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    duration_value: Optional[int] = Field(default=None, gt=0)
    duration_unit: Optional[Literal["DAYS", "WEEKS", "MONTHS"]] = None
    initial_payment: Optional[Decimal] = Field(default=None, gt=0)
    initial_payment_method: PaymentMethod = PaymentMethod.CARD

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Package name is required and cannot be empty')
        return v.strip()


class Package(BaseModel):
    id: int
    client_id: int
    name: str
    total_value: Decimal
    total_sessions: int
    session_value: Decimal
    remaining_sessions: int
    start_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    over_delivered: bool
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class PackageSummary(BaseModel):
    total_value: Decimal
    paid_amount: Decimal
    remaining_balance: Decimal
    total_sessions: int
    unlocked_sessions: int
    used_sessions: int
    available_sessions: int
    is_fully_paid: bool
    payment_progress: Decimal

    model_config = {
        "from_attributes": True
    }


class PaymentCreate(BaseModel):
    amount: Decimal
    payment_date: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    notes: Optional[str] = None
    sales_attributed_to_id: Optional[int] = None
    sales_attributed_to_2_id: Optional[int] = None


class Payment(BaseModel):
    id: int
    package_id: int
    amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethod
    notes: Optional[str] = None
    sales_attributed_to_id: Optional[int] = None
    sales_attributed_to_2_id: Optional[int] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class PaymentRecorded(BaseModel):
    payment: Payment
    newly_unlocked_sessions: int
    summary: PackageSummary


class PaymentDeleted(BaseModel):
    summary: PackageSummary
    over_delivered: bool
    warning: Optional[str] = None


# --------------------
# Commission Schemas
# --------------------

class TierBreakdown(BaseModel):
    tier: Tier
    sessions: int
    value: Decimal
    commission: Decimal


class TrainerCommission(BaseModel):
    trainer_id: int
    trainer_name: Optional[str] = None
    method: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_sessions: int
    validated_sessions: int
    total_value: Decimal
    commission_rate: Decimal
    # Includes tier_bonus
    commission_amount: Decimal
    tier_bonus: Decimal = Decimal("0")
    profile_id: Optional[int] = None
    profile_name: Optional[str] = None
    tier_achieved: Optional[Tier] = None
    next_tier_at: Optional[int] = None
    tiers_applied: Optional[List[TierBreakdown]] = None


class CommissionPreview(BaseModel):
    period: str
    method: CommissionMethod


class TierTable(BaseModel):
    tiers: List[Tier]


class CommissionProfileCreate(BaseModel):
    name: str
    description: Optional[str] = None
    calculation_method: CalculationMethod = CalculationMethod.PROGRESSIVE
    is_default: bool = False
    flat_fee_per_session: Optional[Decimal] = Field(default=None, ge=0)
    percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tiers: List[Tier] = []

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Profile name is required and cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def check_method_settings(self):
        method = self.calculation_method
        if method == CalculationMethod.FLAT_FEE and self.flat_fee_per_session is None:
            raise ValueError('A FLAT_FEE profile needs flat_fee_per_session')
        if method == CalculationMethod.PERCENTAGE and self.percentage is None:
            raise ValueError('A PERCENTAGE profile needs a percentage')
        if method in (CalculationMethod.PROGRESSIVE, CalculationMethod.GRADUATED):
            self.tiers = check_tier_table(sorted(self.tiers, key=lambda t: t.min_sessions))
        return self


class CommissionProfile(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    calculation_method: CalculationMethod
    is_default: bool
    is_active: bool
    flat_fee_per_session: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    tiers: List[Tier] = []
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class ProfileAssignment(BaseModel):
    # None puts the trainer back on the organization default
    profile_id: Optional[int] = None


# --------------------
# Integrity Schemas
# --------------------

class IntegrityWarning(BaseModel):
    id: int
    package_id: int
    kind: WarningKind
    detail: str
    used_sessions: int
    unlocked_sessions: Optional[int] = None
    resolved: bool
    created_at: datetime

    model_config = {
        "from_attributes": True
    }
