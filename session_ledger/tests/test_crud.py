import pytest
from pydantic import ValidationError

from session_ledger import crud, schemas
from session_ledger.errors import CrossTenantMismatch, EntityNotFound


def test_create_and_get_trainers(db, ctx):
    trainer = crud.create_trainer(db, ctx, schemas.TrainerCreate(name="  Rachel "))
    assert trainer.name == "Rachel"
    assert trainer.is_active is True
    assert trainer.organization_id == ctx.organization_id

    trainers = crud.get_trainers(db, ctx)
    assert [t.name for t in trainers] == ["Rachel"]


def test_trainer_name_required():
    with pytest.raises(ValidationError):
        schemas.TrainerCreate(name="   ")


def test_deactivated_trainer_hidden_from_active_list(db, ctx, trainer):
    crud.deactivate_trainer(db, ctx, trainer.id)
    assert crud.get_trainers(db, ctx) == []
    assert len(crud.get_trainers(db, ctx, active_only=False)) == 1


def test_trainers_are_tenant_scoped(db, ctx, other_ctx, trainer):
    assert crud.get_trainers(db, other_ctx) == []
    with pytest.raises(CrossTenantMismatch):
        crud.get_trainer(db, other_ctx, trainer.id)


def test_client_with_foreign_location_rejected(db, other_ctx, location):
    with pytest.raises(CrossTenantMismatch):
        crud.create_client(db, other_ctx, schemas.ClientCreate(name="Alex", location_id=location.id))


def test_get_missing_package(db, ctx):
    with pytest.raises(EntityNotFound):
        crud.get_package(db, ctx, 42)


def test_packages_filtered_by_client_and_status(db, ctx, client, make_package):
    first = make_package(name="10 x PT")
    make_package(name="Intro pack")
    assert len(crud.get_packages(db, ctx, client_id=client.id)) == 2

    crud.deactivate_package(db, ctx, first.id)
    assert [p.name for p in crud.get_packages(db, ctx)] == ["Intro pack"]
