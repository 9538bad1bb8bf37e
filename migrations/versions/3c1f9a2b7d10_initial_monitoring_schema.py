"""initial monitoring, alert and breakdown schema

Revision ID: 3c1f9a2b7d10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '3c1f9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_PREDICATE = sa.text("status IN ('REPORTED', 'REORDER_PENDING', 'REORDER_APPROVED')")


def _audit_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('is_deleted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_by', sa.Integer()),
        sa.Column('updated_by', sa.Integer()),
    ]


def upgrade() -> None:
    op.create_table(
        'institutes',
        *_audit_columns(),
        sa.Column('code', sa.String(20), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('address', sa.Text()),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
    )
    op.create_table(
        'labs',
        *_audit_columns(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('institute_id', sa.Integer(), sa.ForeignKey('institutes.id'), nullable=False),
        sa.Column('department', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
    )
    op.create_index('ix_labs_institute_id', 'labs', ['institute_id'])

    op.create_table(
        'users',
        *_audit_columns(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('role', sa.Enum('POLICY_MAKER', 'LAB_MANAGER', 'TRAINER', name='role'), nullable=False),
        sa.Column('institute_id', sa.Integer(), sa.ForeignKey('institutes.id')),
        sa.Column('department', sa.String(100)),
        sa.Column('lab_id', sa.Integer(), sa.ForeignKey('labs.id')),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'equipment',
        *_audit_columns(),
        sa.Column('equipment_id', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('equipment_type', sa.String(100)),
        sa.Column('institute_id', sa.Integer(), sa.ForeignKey('institutes.id'), nullable=False),
        sa.Column('department', sa.String(100), nullable=False),
        sa.Column('lab_id', sa.Integer(), sa.ForeignKey('labs.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
    )
    op.create_index('ix_equipment_equipment_id', 'equipment', ['equipment_id'], unique=True)
    op.create_index('ix_equipment_institute_id', 'equipment', ['institute_id'])
    op.create_index('ix_equipment_lab_id', 'equipment', ['lab_id'])

    op.create_table(
        'equipment_status',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('equipment_id', sa.Integer(), sa.ForeignKey('equipment.id'), nullable=False, unique=True),
        sa.Column('status', sa.Enum(
            'OPERATIONAL', 'IN_USE', 'IN_CLASS', 'IDLE', 'MAINTENANCE', 'FAULTY', 'OFFLINE', 'WARNING',
            name='equipmentstatustype'), nullable=False),
        sa.Column('health_score', sa.Float()),
        sa.Column('temperature', sa.Float()),
        sa.Column('vibration', sa.Float()),
        sa.Column('energy_consumption', sa.Float()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_equipment_status_last_used_at', 'equipment_status', ['last_used_at'])

    op.create_table(
        'sensor_readings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('equipment_id', sa.Integer(), sa.ForeignKey('equipment.id'), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *[sa.Column(name, sa.Float()) for name in (
            'temperature', 'vibration', 'energy_consumption', 'pressure', 'humidity', 'rpm', 'voltage', 'current',
        )],
    )
    op.create_index('ix_sensor_readings_equipment_timestamp', 'sensor_readings', ['equipment_id', 'timestamp'])

    op.create_table(
        'alerts',
        *_audit_columns(),
        sa.Column('equipment_id', sa.Integer(), sa.ForeignKey('equipment.id')),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20)),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('alert_metadata', sa.JSON()),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_by', sa.Integer()),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('resolution_notes', sa.Text()),
    )
    op.create_index('ix_alerts_equipment_type_resolved', 'alerts', ['equipment_id', 'alert_type', 'is_resolved'])

    op.create_table(
        'notifications',
        *_audit_columns(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('alert_id', sa.Integer(), sa.ForeignKey('alerts.id')),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('alert_id', 'user_id', name='uq_notifications_alert_user'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'breakdown_records',
        *_audit_columns(),
        sa.Column('equipment_id', sa.Integer(), sa.ForeignKey('equipment.id'), nullable=False),
        sa.Column('status', sa.Enum(
            'REPORTED', 'REORDER_PENDING', 'REORDER_APPROVED', 'REORDER_REJECTED', 'RESOLVED',
            name='breakdownstatus'), nullable=False),
        sa.Column('reported_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.Text()),
        sa.Column('is_auto_detected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('alert_id', sa.Integer(), sa.ForeignKey('alerts.id')),
        sa.Column('reported_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('resolved_by', sa.Integer()),
    )
    op.create_index('ix_breakdown_records_equipment_id', 'breakdown_records', ['equipment_id'])
    op.create_index(
        'uq_breakdown_records_open_equipment',
        'breakdown_records',
        ['equipment_id'],
        unique=True,
        postgresql_where=OPEN_PREDICATE,
        sqlite_where=OPEN_PREDICATE,
    )

    op.create_table(
        'reorder_requests',
        *_audit_columns(),
        sa.Column('breakdown_id', sa.Integer(), sa.ForeignKey('breakdown_records.id'), nullable=False),
        sa.Column('requested_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('equipment_name', sa.String(200), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('urgency', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='urgency'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('estimated_cost', sa.Numeric(12, 2)),
        sa.Column('status', sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED', name='reorderstatus'),
                  nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('reviewed_by', sa.Integer()),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        sa.Column('review_comments', sa.Text()),
    )
    op.create_index('ix_reorder_requests_breakdown_id', 'reorder_requests', ['breakdown_id'])
    op.create_index('ix_reorder_requests_status', 'reorder_requests', ['status'])


def downgrade() -> None:
    for table in ('reorder_requests', 'breakdown_records', 'notifications', 'alerts', 'sensor_readings',
                  'equipment_status', 'equipment', 'users', 'labs', 'institutes'):
        op.drop_table(table)
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in ('reorderstatus', 'urgency', 'breakdownstatus', 'equipmentstatustype', 'role'):
            sa.Enum(name=enum_name).drop(bind, checkfirst=True)
