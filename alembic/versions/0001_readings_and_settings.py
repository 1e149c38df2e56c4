"""Readings and runtime settings tables

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create readings table
    op.create_table('readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=False),
        sa.Column('ts', sa.BigInteger(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_readings_id'), 'readings', ['id'], unique=False)
    op.create_index(op.f('ix_readings_device_id'), 'readings', ['device_id'], unique=False)
    op.create_index(op.f('ix_readings_ts'), 'readings', ['ts'], unique=False)

    # Create runtime_settings table
    op.create_table('runtime_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_runtime_settings_id'), 'runtime_settings', ['id'], unique=False)
    op.create_index(op.f('ix_runtime_settings_key'), 'runtime_settings', ['key'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_runtime_settings_key'), table_name='runtime_settings')
    op.drop_index(op.f('ix_runtime_settings_id'), table_name='runtime_settings')
    op.drop_table('runtime_settings')
    op.drop_index(op.f('ix_readings_ts'), table_name='readings')
    op.drop_index(op.f('ix_readings_device_id'), table_name='readings')
    op.drop_index(op.f('ix_readings_id'), table_name='readings')
    op.drop_table('readings')
