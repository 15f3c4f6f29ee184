import os

# Must be set before session_ledger.config is first imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SQLALCHEMY_DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from session_ledger import crud, models, schemas
from session_ledger.context import TenantContext
from session_ledger.database import Base

# Setup in-memory SQLite for testing
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 10, 1, 9, 0, 0)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def org(db):
    return crud.create_organization(
        db, "Northside PT", flat_fee_per_session=Decimal("25.00"), flat_percentage=Decimal("20")
    )


@pytest.fixture
def ctx(org):
    return TenantContext(organization_id=org.id, user_id=1, role="ADMIN")


@pytest.fixture
def other_ctx(db):
    other = crud.create_organization(db, "Southside PT")
    return TenantContext(organization_id=other.id, user_id=2, role="ADMIN")


@pytest.fixture
def location(db, ctx):
    return crud.create_location(db, ctx, "Main Studio")


@pytest.fixture
def trainer(db, ctx):
    return crud.create_trainer(db, ctx, schemas.TrainerCreate(name="Rachel", email="rachel@example.com"))


@pytest.fixture
def client(db, ctx, location):
    return crud.create_client(
        db, ctx, schemas.ClientCreate(name="Sam Client", email="sam@example.com", location_id=location.id)
    )


@pytest.fixture
def make_package(db, ctx, client):
    """Sell ``client`` a package; ``paid`` is recorded as the initial payment."""

    def _make(total_value="1200", total_sessions=12, paid=None, **kwargs):
        package_in = schemas.PackageCreate(
            client_id=kwargs.pop("client_id", client.id),
            name=kwargs.pop("name", "12 x PT"),
            total_value=Decimal(total_value),
            total_sessions=total_sessions,
            initial_payment=Decimal(paid) if paid else None,
            **kwargs,
        )
        return crud.create_package(db, ctx, package_in, now=NOW - timedelta(days=1))

    return _make


@pytest.fixture
def add_session(db, trainer, client):
    """Insert a session row directly, bypassing capacity checks."""

    def _add(package, session_date=NOW, validated=True, cancelled=False, value=None, trainer_id=None):
        session = models.Session(
            organization_id=package.organization_id,
            trainer_id=trainer_id or trainer.id,
            client_id=client.id,
            package_id=package.id,
            session_date=session_date,
            session_value=Decimal(value) if value is not None else package.session_value,
            validated=validated,
            validated_at=session_date if validated else None,
            cancelled=cancelled,
            validation_expiry=None if validated or cancelled else session_date + timedelta(days=30),
        )
        db.add(session)
        db.commit()
        return session

    return _add
