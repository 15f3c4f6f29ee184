"""
Session Validation State Machine.

    AwaitingConfirmation -> Validated   (client confirms through the emailed token)
    AwaitingConfirmation -> Expired     (no answer before validation_expiry)
    AwaitingConfirmation -> Cancelled   (e.g. no-show recorded later)
    NoShow               -> Cancelled   (created cancelled, no token issued)

Expiry is never written: it is read off ``validation_expiry`` at the time of
each lookup, so no background sweep is needed. There is no client-side
reject; a session the client does not confirm simply expires.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from session_ledger import integrity, ledger, models, schemas
from session_ledger.config import get_settings
from session_ledger.context import TenantContext
from session_ledger.errors import (
    CapacityExceeded,
    EntityNotFound,
    InvalidSessionState,
    PackageClientMismatch,
    PackageExpired,
    PackageInactive,
    TokenNotFound,
    ValidationExpired,
)
from session_ledger.models import SessionStatus, as_naive_utc, utcnow
from session_ledger.notifications import Outbox, SessionValidated, SessionValidationRequested
from session_ledger.unlock import LedgerSummary, payment_needed_for_next_session

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")


def new_token() -> str:
    """256 random bits, hex encoded."""
    return secrets.token_hex(32)


def is_well_formed(token: Optional[str]) -> bool:
    return bool(token) and _TOKEN_RE.match(token) is not None


def _get(db: Session, model, entity_id: int):
    row = db.get(model, entity_id)
    if row is None:
        raise EntityNotFound(f"{model.__name__} {entity_id} not found")
    return row


def _capacity_error(package: models.Package, summary: LedgerSummary) -> CapacityExceeded:
    if summary.unlocked_sessions >= summary.total_sessions:
        return CapacityExceeded(
            f"All {summary.total_sessions} sessions of package '{package.name}' have been used",
            used_sessions=summary.used_sessions,
            total_sessions=summary.total_sessions,
        )
    needed = payment_needed_for_next_session(
        summary.paid_amount, summary.total_value, summary.total_sessions, summary.used_sessions
    )
    return CapacityExceeded(
        f"Payment required to unlock more sessions. Current: {summary.unlocked_sessions}/"
        f"{summary.total_sessions} unlocked ({summary.used_sessions} used). "
        f"A payment of ${needed:.2f} unlocks the next session.",
        unlocked_sessions=summary.unlocked_sessions,
        used_sessions=summary.used_sessions,
        payment_needed=str(needed),
    )


def _validation_requested(session: models.Session, *, reminder: bool = False) -> SessionValidationRequested:
    settings = get_settings()
    return SessionValidationRequested(
        session_id=session.id,
        client_email=session.client.email,
        client_name=session.client.name,
        trainer_name=session.trainer.name,
        session_date=session.session_date,
        location_name=session.location.name if session.location else None,
        session_value=session.session_value,
        validation_url=settings.validation_url(session.validation_token),
        expiry_days=settings.SESSION_VALIDATION_EXPIRY_DAYS,
        reminder=reminder,
    )


# --------------------
# Creation
# --------------------

def create_session(
    db: Session,
    ctx: TenantContext,
    *,
    trainer_id: int,
    client_id: int,
    package_id: int,
    session_date: datetime,
    notes: Optional[str] = None,
    is_no_show: bool = False,
    location_id: Optional[int] = None,
    now: Optional[datetime] = None,
    outbox: Optional[Outbox] = None,
) -> models.Session:
    """
    Log a session against a package with unlocked capacity.

    The package row stays locked from the capacity check to the commit, so
    two concurrent requests for the last unlocked slot cannot both succeed.
    A no-show is stored cancelled straight away and gets no token, but it
    still uses up a session of the package.
    """
    settings = get_settings()
    now = as_naive_utc(now) or utcnow()
    try:
        trainer = _get(db, models.Trainer, trainer_id)
        client = _get(db, models.Client, client_id)
        package = ledger.lock_package(db, package_id)
        location = _get(db, models.Location, location_id) if location_id else client.location
        ctx.require_same_tenant(trainer, client, package, location)

        if package.client_id != client.id:
            raise PackageClientMismatch(f"Package {package.id} does not belong to client {client.id}")
        if not package.is_active:
            raise PackageInactive(f"Package '{package.name}' is inactive")
        if package.expires_at is not None and now > package.expires_at:
            raise PackageExpired(
                f"Package '{package.name}' expired on {package.expires_at:%Y-%m-%d}",
                expires_at=package.expires_at.isoformat(),
            )

        summary = ledger.summarize(db, package)
        if summary.available_sessions <= 0:
            raise _capacity_error(package, summary)
        integrity.reconcile_remaining(db, package, summary.used_sessions)

        session = models.Session(
            organization_id=package.organization_id,
            trainer_id=trainer.id,
            client_id=client.id,
            package_id=package.id,
            location_id=location.id if location else None,
            session_date=as_naive_utc(session_date),
            session_value=package.session_value,
            notes=notes,
            created_at=now,
        )
        if is_no_show:
            session.cancelled = True
            session.cancelled_at = now
            session.no_show = True
        else:
            session.validation_token = new_token()
            session.validation_expiry = now + timedelta(days=settings.SESSION_VALIDATION_EXPIRY_DAYS)
        db.add(session)
        db.flush()

        package.remaining_sessions = max(0, package.total_sessions - summary.used_sessions - 1)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(session)
    logger.info(
        "[session] created id=%s trainer=%s package=%s no_show=%s",
        session.id, session.trainer_id, session.package_id, is_no_show,
    )
    if outbox is not None and not is_no_show:
        outbox.stage(_validation_requested(session))
    return session


# --------------------
# Token lookups
# --------------------

def _find_by_token(db: Session, token: str) -> Optional[models.Session]:
    if not is_well_formed(token):
        return None
    return (
        db.query(models.Session)
        .filter(or_(models.Session.validation_token == token, models.Session.redeemed_token == token))
        .populate_existing()
        .first()
    )


def check_status(db: Session, token: str, *, now: Optional[datetime] = None) -> schemas.ValidationStatus:
    """Side-effect-free read of where a token stands."""
    now = as_naive_utc(now) or utcnow()
    session = _find_by_token(db, token)
    if session is None or session.cancelled:
        return schemas.ValidationStatus(status="not_found", help=TokenNotFound.help)

    details = dict(
        session_id=session.id,
        session_date=session.session_date,
        session_value=session.session_value,
        trainer_name=session.trainer.name,
        location_name=session.location.name if session.location else None,
    )
    status = session.status_at(now)
    if status == SessionStatus.VALIDATED:
        return schemas.ValidationStatus(status="already_validated", validated_at=session.validated_at, **details)
    if status == SessionStatus.EXPIRED:
        return schemas.ValidationStatus(
            status="expired", expired_at=session.validation_expiry, help=ValidationExpired.help, **details
        )
    return schemas.ValidationStatus(status="pending", **details)


def validate(
    db: Session,
    token: str,
    *,
    now: Optional[datetime] = None,
    outbox: Optional[Outbox] = None,
) -> schemas.ValidationResult:
    """
    Confirm a session. Idempotent: a token that was already redeemed returns
    the original ``validated_at`` and changes nothing.

    The transition is one conditional UPDATE, so of two concurrent calls on
    the same token exactly one sees a matching row.
    """
    now = as_naive_utc(now) or utcnow()
    if not is_well_formed(token):
        raise TokenNotFound("Invalid validation token")

    try:
        updated = (
            db.query(models.Session)
            .filter(
                models.Session.validation_token == token,
                models.Session.validated == False,  # noqa: E712
                models.Session.cancelled == False,  # noqa: E712
                models.Session.validation_expiry >= now,
            )
            .update(
                {
                    models.Session.validated: True,
                    models.Session.validated_at: now,
                    models.Session.validation_token: None,
                    models.Session.validation_expiry: None,
                    models.Session.redeemed_token: token,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    session = _find_by_token(db, token)
    if updated == 1:
        logger.info("[session] validated id=%s", session.id)
        if outbox is not None:
            outbox.stage(SessionValidated(
                session_id=session.id,
                trainer_id=session.trainer_id,
                client_id=session.client_id,
                validated_at=session.validated_at,
            ))
        return schemas.ValidationResult(session_id=session.id, validated_at=session.validated_at)

    if session is None or session.cancelled:
        raise TokenNotFound("Invalid validation token")
    if session.validated:
        return schemas.ValidationResult(
            session_id=session.id, validated_at=session.validated_at, already_validated=True
        )
    if session.status_at(now) == SessionStatus.EXPIRED:
        raise ValidationExpired(
            "Validation token has expired",
            expired_at=session.validation_expiry.isoformat(),
        )
    raise TokenNotFound("Invalid validation token")


# --------------------
# Trainer/admin side transitions
# --------------------

def cancel_session(
    db: Session,
    ctx: TenantContext,
    session_id: int,
    *,
    now: Optional[datetime] = None,
) -> models.Session:
    """AwaitingConfirmation -> Cancelled. Frees the package slot."""
    now = as_naive_utc(now) or utcnow()
    try:
        session = _get(db, models.Session, session_id)
        ctx.require_same_tenant(session)
        package = ledger.lock_package(db, session.package_id)

        status = session.status_at(now)
        if status != SessionStatus.AWAITING:
            raise InvalidSessionState(
                f"Session {session.id} is {status.value.lower()} and cannot be cancelled",
                status=status.value,
            )
        session.cancelled = True
        session.cancelled_at = now
        session.validation_token = None
        session.validation_expiry = None
        db.flush()

        used = ledger.count_used_sessions(db, package.id)
        package.remaining_sessions = max(0, package.total_sessions - used)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(session)
    logger.info("[session] cancelled id=%s", session.id)
    return session


def resend_validation(
    db: Session,
    ctx: TenantContext,
    session_id: int,
    *,
    now: Optional[datetime] = None,
    outbox: Optional[Outbox] = None,
) -> models.Session:
    """Rotate the token of a still-pending session and restart its window."""
    settings = get_settings()
    now = as_naive_utc(now) or utcnow()
    try:
        session = _get(db, models.Session, session_id)
        ctx.require_same_tenant(session)

        status = session.status_at(now)
        if status == SessionStatus.EXPIRED:
            raise ValidationExpired(f"Validation for session {session.id} has expired")
        if status != SessionStatus.AWAITING:
            raise InvalidSessionState(
                f"Session {session.id} is {status.value.lower()}; nothing to resend",
                status=status.value,
            )
        session.validation_token = new_token()
        session.validation_expiry = now + timedelta(days=settings.SESSION_VALIDATION_EXPIRY_DAYS)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(session)
    logger.info("[session] validation resent id=%s", session.id)
    if outbox is not None:
        outbox.stage(_validation_requested(session, reminder=True))
    return session


def list_sessions(
    db: Session,
    ctx: TenantContext,
    *,
    trainer_id: Optional[int] = None,
    client_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[SessionStatus] = None,
    now: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Session]:
    now = as_naive_utc(now) or utcnow()
    q = db.query(models.Session).filter(models.Session.organization_id == ctx.organization_id)
    if trainer_id is not None:
        q = q.filter(models.Session.trainer_id == trainer_id)
    if client_id is not None:
        q = q.filter(models.Session.client_id == client_id)
    if start:
        q = q.filter(models.Session.session_date >= start)
    if end:
        q = q.filter(models.Session.session_date <= end)

    awaiting = (models.Session.validated == False) & (models.Session.cancelled == False)  # noqa: E712
    if status == SessionStatus.VALIDATED:
        q = q.filter(models.Session.validated == True)  # noqa: E712
    elif status == SessionStatus.CANCELLED:
        q = q.filter(models.Session.cancelled == True)  # noqa: E712
    elif status == SessionStatus.AWAITING:
        q = q.filter(awaiting, models.Session.validation_expiry >= now)
    elif status == SessionStatus.EXPIRED:
        q = q.filter(awaiting, models.Session.validation_expiry < now)

    return (
        q.order_by(models.Session.session_date.desc(), models.Session.id.desc())
         .offset(skip)
         .limit(limit)
         .all()
    )
