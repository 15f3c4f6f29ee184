"""add commission profiles, tier bonus and closed-period snapshots

Revision ID: 8b1e4d2c6a93
Revises: 3f2c9a1d7b40
Create Date: 2026-10-18 15:40:07.518226

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b1e4d2c6a93'
down_revision: Union[str, Sequence[str], None] = '3f2c9a1d7b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

calculation_method = sa.Enum('FLAT_FEE', 'PERCENTAGE', 'PROGRESSIVE', 'GRADUATED', name='calculationmethod')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'commission_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('calculation_method', calculation_method, nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('flat_fee_per_session', sa.Numeric(12, 2), nullable=True),
        sa.Column('percentage', sa.Numeric(5, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', name='uq_commission_profiles_org_name')
    )
    op.create_index(op.f('ix_commission_profiles_id'), 'commission_profiles', ['id'], unique=False)
    op.create_index(op.f('ix_commission_profiles_organization_id'), 'commission_profiles', ['organization_id'], unique=False)

    with op.batch_alter_table('trainers') as batch_op:
        batch_op.add_column(sa.Column('commission_profile_id', sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            'fk_trainers_commission_profile_id', 'commission_profiles', ['commission_profile_id'], ['id']
        )

    with op.batch_alter_table('commission_tiers') as batch_op:
        batch_op.add_column(sa.Column('profile_id', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('tier_bonus', sa.Numeric(12, 2), nullable=True))
        batch_op.create_foreign_key(
            'fk_commission_tiers_profile_id', 'commission_profiles', ['profile_id'], ['id']
        )
        batch_op.create_index(op.f('ix_commission_tiers_profile_id'), ['profile_id'], unique=False)

    op.create_table(
        'commission_calculations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('trainer_id', sa.Integer(), nullable=False),
        sa.Column('profile_id', sa.Integer(), nullable=True),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('calculation_method', calculation_method, nullable=False),
        sa.Column('validated_sessions', sa.Integer(), nullable=False),
        sa.Column('total_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('tier_bonus', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['trainer_id'], ['trainers.id']),
        sa.ForeignKeyConstraint(['profile_id'], ['commission_profiles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trainer_id', 'period_start', name='uq_commission_calculations_trainer_period')
    )
    op.create_index(op.f('ix_commission_calculations_id'), 'commission_calculations', ['id'], unique=False)
    op.create_index(
        op.f('ix_commission_calculations_organization_id'), 'commission_calculations', ['organization_id'], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('commission_calculations')
    with op.batch_alter_table('commission_tiers') as batch_op:
        batch_op.drop_index(op.f('ix_commission_tiers_profile_id'))
        batch_op.drop_constraint('fk_commission_tiers_profile_id', type_='foreignkey')
        batch_op.drop_column('tier_bonus')
        batch_op.drop_column('profile_id')
    with op.batch_alter_table('trainers') as batch_op:
        batch_op.drop_constraint('fk_trainers_commission_profile_id', type_='foreignkey')
        batch_op.drop_column('commission_profile_id')
    op.drop_table('commission_profiles')
    calculation_method.drop(op.get_bind(), checkfirst=True)
