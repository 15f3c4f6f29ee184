from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from session_ledger import (
    commission,
    crud,
    integrity,
    models,
    notifications,
    payments,
    schemas,
    validation,
)
from session_ledger.context import TenantContext
from session_ledger.database import engine, get_db
from session_ledger.errors import EntityNotFound, LedgerError
from session_ledger.logging_config import configure_logging
from session_ledger.models import SessionStatus, utcnow


# ------------------------------------------------------------------
# Startup: logging and tables
# ------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Session Ledger", lifespan=lifespan)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------
def get_tenant(
    x_organization_id: int = Header(...),
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> TenantContext:
    # Identity comes from the auth proxy in front of the service
    return TenantContext(organization_id=x_organization_id, user_id=x_user_id, role=x_user_role)


_notifier = notifications.LoggingNotifier()


def get_notifier() -> notifications.Notifier:
    return _notifier


def get_outbox() -> notifications.Outbox:
    return notifications.Outbox()


def flush_after_response(
    background_tasks: BackgroundTasks,
    notifier: notifications.Notifier,
    outbox: notifications.Outbox,
) -> None:
    if len(outbox):
        background_tasks.add_task(notifications.dispatch, notifier, outbox)


def _summary(summary) -> schemas.PackageSummary:
    return schemas.PackageSummary.model_validate(summary)


# ------------------------------------------------------------------
# Trainers & clients
# ------------------------------------------------------------------
@app.post("/trainers/", response_model=schemas.Trainer, status_code=201)
def create_trainer(
    trainer_in: schemas.TrainerCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.create_trainer(db, ctx, trainer_in)


@app.get("/trainers/", response_model=List[schemas.Trainer])
def list_trainers(
    active_only: bool = True,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.get_trainers(db, ctx, active_only=active_only)


@app.delete("/trainers/{trainer_id}", response_model=schemas.Trainer)
def deactivate_trainer(
    trainer_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.deactivate_trainer(db, ctx, trainer_id)


@app.get("/clients/", response_model=List[schemas.Client])
def list_clients(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant)):
    return crud.get_clients(db, ctx)


@app.post("/clients/", response_model=schemas.Client, status_code=201)
def create_client(
    client_in: schemas.ClientCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.create_client(db, ctx, client_in)


# ------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------
@app.post("/sessions/", response_model=schemas.Session, status_code=201)
def create_session(
    session_in: schemas.SessionCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
    notifier: notifications.Notifier = Depends(get_notifier),
    outbox: notifications.Outbox = Depends(get_outbox),
):
    session = validation.create_session(
        db, ctx,
        trainer_id=session_in.trainer_id,
        client_id=session_in.client_id,
        package_id=session_in.package_id,
        location_id=session_in.location_id,
        session_date=session_in.session_date,
        notes=session_in.notes,
        is_no_show=session_in.is_no_show,
        outbox=outbox,
    )
    flush_after_response(background_tasks, notifier, outbox)
    return session


@app.get("/sessions/", response_model=List[schemas.SessionListItem])
def list_sessions(
    trainer_id: Optional[int] = None,
    client_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[SessionStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    now = utcnow()
    sessions = validation.list_sessions(
        db, ctx,
        trainer_id=trainer_id, client_id=client_id,
        start=start, end=end, status=status, now=now,
        skip=skip, limit=limit,
    )
    return [
        schemas.SessionListItem(
            **schemas.Session.model_validate(s).model_dump(),
            status=s.status_at(now),
        )
        for s in sessions
    ]


@app.post("/sessions/{session_id}/cancel", response_model=schemas.Session)
def cancel_session(
    session_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return validation.cancel_session(db, ctx, session_id)


@app.post("/sessions/{session_id}/resend-validation", response_model=schemas.Session)
def resend_validation(
    session_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
    notifier: notifications.Notifier = Depends(get_notifier),
    outbox: notifications.Outbox = Depends(get_outbox),
):
    session = validation.resend_validation(db, ctx, session_id, outbox=outbox)
    flush_after_response(background_tasks, notifier, outbox)
    return session


# ------------------------------------------------------------------
# Client-facing validation link (no tenant headers: the token is the credential)
# ------------------------------------------------------------------
@app.get("/sessions/validate/{token}", response_model=schemas.ValidationStatus)
def check_validation_status(token: str, db: Session = Depends(get_db)):
    return validation.check_status(db, token)


@app.post("/sessions/validate/{token}", response_model=schemas.ValidationResult)
def validate_session(
    token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: notifications.Notifier = Depends(get_notifier),
    outbox: notifications.Outbox = Depends(get_outbox),
):
    result = validation.validate(db, token, outbox=outbox)
    flush_after_response(background_tasks, notifier, outbox)
    return result


# ------------------------------------------------------------------
# Packages & payments
# ------------------------------------------------------------------
@app.post("/packages/", response_model=schemas.Package, status_code=201)
def create_package(
    package_in: schemas.PackageCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.create_package(db, ctx, package_in)


@app.get("/packages/", response_model=List[schemas.Package])
def list_packages(
    client_id: Optional[int] = None,
    active_only: bool = True,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.get_packages(db, ctx, client_id=client_id, active_only=active_only)


@app.delete("/packages/{package_id}", response_model=schemas.Package)
def deactivate_package(
    package_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return crud.deactivate_package(db, ctx, package_id)


@app.get("/packages/{package_id}/summary", response_model=schemas.PackageSummary)
def package_summary(
    package_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return _summary(payments.get_package_summary(db, ctx, package_id))


@app.get("/packages/{package_id}/payments", response_model=List[schemas.Payment])
def list_payments(
    package_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return payments.list_payments(db, ctx, package_id)


@app.post("/packages/{package_id}/payments", response_model=schemas.PaymentRecorded, status_code=201)
def record_payment(
    package_id: int,
    payment_in: schemas.PaymentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
    notifier: notifications.Notifier = Depends(get_notifier),
    outbox: notifications.Outbox = Depends(get_outbox),
):
    recorded = payments.record_payment(
        db, ctx, package_id, payment_in.amount,
        payment_date=payment_in.payment_date,
        payment_method=payment_in.payment_method,
        notes=payment_in.notes,
        sales_attributed_to_id=payment_in.sales_attributed_to_id,
        sales_attributed_to_2_id=payment_in.sales_attributed_to_2_id,
        outbox=outbox,
    )
    flush_after_response(background_tasks, notifier, outbox)
    return schemas.PaymentRecorded(
        payment=schemas.Payment.model_validate(recorded.payment),
        newly_unlocked_sessions=recorded.newly_unlocked_sessions,
        summary=_summary(recorded.summary),
    )


@app.delete("/payments/{payment_id}", response_model=schemas.PaymentDeleted)
def delete_payment(
    payment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
    notifier: notifications.Notifier = Depends(get_notifier),
    outbox: notifications.Outbox = Depends(get_outbox),
):
    deleted = payments.delete_payment(db, ctx, payment_id, outbox=outbox)
    flush_after_response(background_tasks, notifier, outbox)
    return schemas.PaymentDeleted(
        summary=_summary(deleted.summary),
        over_delivered=deleted.over_delivered,
        warning=deleted.warning,
    )


# ------------------------------------------------------------------
# Commission
# ------------------------------------------------------------------
@app.get("/commission/", response_model=List[schemas.TrainerCommission])
def monthly_commissions(
    period: str,
    method: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    """Without ``method`` each trainer is paid by their commission profile."""
    year, month = commission.parse_period(period)
    return commission.calculate_monthly_commissions(db, ctx, year, month, method_name=method)


@app.get("/commission/{trainer_id}", response_model=schemas.TrainerCommission)
def trainer_commission(
    trainer_id: int,
    period: str,
    method: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    year, month = commission.parse_period(period)
    return commission.calculate_trainer_commission(db, ctx, trainer_id, year, month, method_name=method)


@app.post("/commission/{trainer_id}/preview", response_model=schemas.TrainerCommission)
def preview_commission(
    trainer_id: int,
    preview: schemas.CommissionPreview,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    """Run an ad-hoc method (not the stored configuration) over a trainer's month."""
    year, month = commission.parse_period(preview.period)
    return commission.calculate_trainer_commission(db, ctx, trainer_id, year, month, preview.method)


@app.get("/commission/periods/{period}", response_model=List[schemas.TrainerCommission])
def closed_period(
    period: str,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    year, month = commission.parse_period(period)
    results = commission.closed_period(db, ctx, year, month)
    if not results:
        raise EntityNotFound(f"Period {period} has not been closed")
    return results


@app.post("/commission/periods/{period}/close", response_model=List[schemas.TrainerCommission])
def close_period(
    period: str,
    method: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    year, month = commission.parse_period(period)
    return commission.close_period(db, ctx, year, month, method_name=method)


@app.get("/commission-tiers/", response_model=schemas.TierTable)
def get_tier_table(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant)):
    return schemas.TierTable(tiers=commission.get_tier_table(db, ctx))


@app.put("/commission-tiers/", response_model=schemas.TierTable)
def replace_tier_table(
    table: schemas.TierTable,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return schemas.TierTable(tiers=commission.replace_tier_table(db, ctx, table.tiers))


@app.post("/commission-profiles/", response_model=schemas.CommissionProfile, status_code=201)
def create_commission_profile(
    profile: schemas.CommissionProfileCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return commission.create_profile(db, ctx, profile)


@app.get("/commission-profiles/", response_model=List[schemas.CommissionProfile])
def list_commission_profiles(
    active_only: bool = True,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return commission.get_profiles(db, ctx, active_only=active_only)


@app.delete("/commission-profiles/{profile_id}", response_model=schemas.CommissionProfile)
def deactivate_commission_profile(
    profile_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return commission.deactivate_profile(db, ctx, profile_id)


@app.put("/trainers/{trainer_id}/commission-profile", response_model=schemas.Trainer)
def assign_commission_profile(
    trainer_id: int,
    assignment: schemas.ProfileAssignment,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return commission.assign_profile(db, ctx, trainer_id, assignment.profile_id)


# ------------------------------------------------------------------
# Integrity
# ------------------------------------------------------------------
@app.get("/integrity/warnings", response_model=List[schemas.IntegrityWarning])
def list_integrity_warnings(
    include_resolved: bool = False,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    return integrity.list_warnings(db, ctx, include_resolved=include_resolved)


@app.post("/integrity/audit", response_model=List[schemas.IntegrityWarning])
def run_integrity_audit(db: Session = Depends(get_db), ctx: TenantContext = Depends(get_tenant)):
    return integrity.audit_packages(db, ctx)
