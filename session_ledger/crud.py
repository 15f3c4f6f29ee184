import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from session_ledger import models, payments, schemas
from session_ledger.context import TenantContext
from session_ledger.errors import EntityNotFound
from session_ledger.models import as_naive_utc, utcnow
from session_ledger.money import quantize_money, to_decimal

logger = logging.getLogger(__name__)


def _get_owned(db: Session, ctx: TenantContext, model, entity_id: int):
    row = db.get(model, entity_id)
    if row is None:
        raise EntityNotFound(f"{model.__name__} {entity_id} not found")
    ctx.require_same_tenant(row)
    return row


# --------------------
# Organization / Location CRUD
# --------------------

def create_organization(
    db: Session,
    name: str,
    *,
    flat_fee_per_session=None,
    flat_percentage=None,
):
    db_org = models.Organization(
        name=name,
        flat_fee_per_session=flat_fee_per_session,
        flat_percentage=flat_percentage,
    )
    db.add(db_org)
    db.commit()
    db.refresh(db_org)
    return db_org


def create_location(db: Session, ctx: TenantContext, name: str):
    db_location = models.Location(organization_id=ctx.organization_id, name=name)
    db.add(db_location)
    db.commit()
    db.refresh(db_location)
    return db_location


# --------------------
# Trainer CRUD
# --------------------

def create_trainer(db: Session, ctx: TenantContext, trainer_in: schemas.TrainerCreate):
    """Create a new trainer."""
    db_trainer = models.Trainer(
        organization_id=ctx.organization_id,
        name=trainer_in.name,
        email=trainer_in.email,
        is_active=True,
    )
    db.add(db_trainer)
    db.commit()
    db.refresh(db_trainer)
    return db_trainer


def get_trainers(
    db: Session,
    ctx: TenantContext,
    skip: int = 0,
    limit: int = 100,
    active_only: bool = True,
):
    """Get list of trainers, optionally filtered by active status."""
    q = db.query(models.Trainer).filter(models.Trainer.organization_id == ctx.organization_id)
    if active_only:
        q = q.filter(models.Trainer.is_active == True)  # noqa: E712
    return q.order_by(models.Trainer.name).offset(skip).limit(limit).all()


def get_trainer(db: Session, ctx: TenantContext, trainer_id: int):
    return _get_owned(db, ctx, models.Trainer, trainer_id)


def deactivate_trainer(db: Session, ctx: TenantContext, trainer_id: int):
    """Soft delete a trainer by setting is_active to False."""
    trainer = get_trainer(db, ctx, trainer_id)
    trainer.is_active = False
    db.commit()
    return trainer


# --------------------
# Client CRUD
# --------------------

def create_client(db: Session, ctx: TenantContext, client_in: schemas.ClientCreate):
    if client_in.location_id is not None:
        _get_owned(db, ctx, models.Location, client_in.location_id)
    db_client = models.Client(
        organization_id=ctx.organization_id,
        location_id=client_in.location_id,
        name=client_in.name,
        email=client_in.email,
        is_active=True,
    )
    db.add(db_client)
    db.commit()
    db.refresh(db_client)
    return db_client


def get_clients(db: Session, ctx: TenantContext, skip: int = 0, limit: int = 100):
    return (
        db.query(models.Client)
        .filter(models.Client.organization_id == ctx.organization_id)
        .order_by(models.Client.name)
        .offset(skip)
        .limit(limit)
        .all()
    )


# --------------------
# Package CRUD
# --------------------

def calculate_expiry_date(start: datetime, duration_value: int, duration_unit: str) -> datetime:
    """
    start + duration. Months keep the day of month where it exists and clamp
    to the last day otherwise (Jan 31 + 1 month = Feb 28/29).
    """
    unit = duration_unit.upper()
    if unit == "DAYS":
        return start + timedelta(days=duration_value)
    if unit == "WEEKS":
        return start + timedelta(weeks=duration_value)
    if unit == "MONTHS":
        month_index = start.month - 1 + duration_value
        year = start.year + month_index // 12
        month = month_index % 12 + 1
        day = min(start.day, calendar.monthrange(year, month)[1])
        return start.replace(year=year, month=month, day=day)
    raise ValueError(f"Unknown duration unit: {duration_unit}")


def create_package(
    db: Session,
    ctx: TenantContext,
    package_in: schemas.PackageCreate,
    *,
    now: Optional[datetime] = None,
):
    """
    Sell a package to a client. The per-session value is fixed here. An
    initial payment, if given, is recorded in the same transaction.
    """
    now = as_naive_utc(now) or utcnow()
    try:
        client = _get_owned(db, ctx, models.Client, package_in.client_id)

        total_value = quantize_money(to_decimal(package_in.total_value))
        start_date = as_naive_utc(package_in.start_date) or now
        expires_at = as_naive_utc(package_in.expires_at)
        if expires_at is None and package_in.duration_value and package_in.duration_unit:
            expires_at = calculate_expiry_date(start_date, package_in.duration_value, package_in.duration_unit)

        db_package = models.Package(
            organization_id=ctx.organization_id,
            client_id=client.id,
            name=package_in.name,
            total_value=total_value,
            total_sessions=package_in.total_sessions,
            session_value=quantize_money(total_value / package_in.total_sessions),
            remaining_sessions=package_in.total_sessions,
            start_date=start_date,
            expires_at=expires_at,
            is_active=True,
            over_delivered=False,
            created_at=now,
        )
        db.add(db_package)
        db.flush()

        if package_in.initial_payment:
            payments.add_payment(
                db, ctx, db_package, package_in.initial_payment,
                payment_method=package_in.initial_payment_method,
                notes="Initial payment",
                now=now,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(db_package)
    logger.info(
        "[package] created id=%s client=%s sessions=%s value=%s",
        db_package.id, client.id, db_package.total_sessions, db_package.total_value,
    )
    return db_package


def get_package(db: Session, ctx: TenantContext, package_id: int):
    return _get_owned(db, ctx, models.Package, package_id)


def get_packages(
    db: Session,
    ctx: TenantContext,
    *,
    client_id: Optional[int] = None,
    active_only: bool = True,
    skip: int = 0,
    limit: int = 100,
):
    """Get list of packages, optionally filtered by client and active status."""
    q = db.query(models.Package).filter(models.Package.organization_id == ctx.organization_id)
    if client_id is not None:
        q = q.filter(models.Package.client_id == client_id)
    if active_only:
        q = q.filter(models.Package.is_active == True)  # noqa: E712
    return q.order_by(models.Package.created_at.desc()).offset(skip).limit(limit).all()


def deactivate_package(db: Session, ctx: TenantContext, package_id: int):
    """Soft delete a package by setting is_active to False."""
    package = get_package(db, ctx, package_id)
    package.is_active = False
    db.commit()
    return package
