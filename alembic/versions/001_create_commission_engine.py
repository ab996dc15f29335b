"""Create commission engine tables

Revision ID: 001_commission_engine
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_commission_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create tenants, brokers, rules, student/fee/payment and commission tables"""

    # ====================
    # TENANTS TABLE
    # ====================
    op.create_table(
        'tenants',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subdomain', sa.String(100), unique=True, nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('settings', JSONB, server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    # ====================
    # BROKERS TABLE
    # ====================
    op.create_table(
        'brokers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(30), nullable=False, comment='Unique per tenant e.g., BRK-001, AGT-001'),
        sa.Column('parent_broker_id', UUID(as_uuid=True), sa.ForeignKey('brokers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('level', sa.Integer, server_default='0', nullable=False, comment='0 = root, parent level + 1 otherwise'),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('metadata', JSONB, server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_broker_tenant_code'),
    )

    op.create_index('ix_brokers_tenant_id', 'brokers', ['tenant_id'])
    op.create_index('ix_brokers_tenant_parent', 'brokers', ['tenant_id', 'parent_broker_id'])

    # ====================
    # COMMISSION RULES TABLE
    # ====================
    op.create_table(
        'commission_rules',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('broker_id', UUID(as_uuid=True), sa.ForeignKey('brokers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('level', sa.Integer, nullable=False, comment='Broker level when the rule was created (informational)'),
        sa.Column('percentage', sa.Numeric(7, 4), nullable=False, comment='Commission %, 0 < percentage <= 100'),
        sa.Column('conditions', JSONB, server_default='{}', nullable=False),
        sa.Column('priority', sa.Integer, server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_commission_rules_tenant_id', 'commission_rules', ['tenant_id'])
    op.create_index('ix_commission_rules_broker_active', 'commission_rules', ['broker_id', 'is_active'])

    # ====================
    # STUDENTS / FEES / PAYMENTS (read by the engine)
    # ====================
    op.create_table(
        'students',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('enrollment_number', sa.String(50), nullable=False),
        sa.Column('grade_level', sa.String(20), nullable=True),
        sa.Column('broker_id', UUID(as_uuid=True), sa.ForeignKey('brokers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_students_tenant_id', 'students', ['tenant_id'])
    op.create_index('ix_students_tenant_broker', 'students', ['tenant_id', 'broker_id'])

    op.create_table(
        'fees',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', UUID(as_uuid=True), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('fee_type', sa.String(50), nullable=False, comment='TUITION, ADMISSION, EXAM, TRANSPORT, ...'),
        sa.Column('amount', sa.Numeric(18, 3), nullable=False),
        sa.Column('academic_year', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_fees_tenant_id', 'fees', ['tenant_id'])
    op.create_index('ix_fees_student_id', 'fees', ['student_id'])

    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('fee_id', UUID(as_uuid=True), sa.ForeignKey('fees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', UUID(as_uuid=True), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(18, 3), nullable=False),
        sa.Column('payment_method', sa.String(30), nullable=True),
        sa.Column('status', sa.String(20), server_default='COMPLETED', nullable=False,
                  comment='PENDING, COMPLETED, FAILED, REFUNDED'),
        sa.Column('paid_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payments_fee_id', 'payments', ['fee_id'])
    op.create_index('ix_payments_student_id', 'payments', ['student_id'])

    # ====================
    # COMMISSIONS TABLE
    # ====================
    op.create_table(
        'commissions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('broker_id', UUID(as_uuid=True), sa.ForeignKey('brokers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('payment_id', UUID(as_uuid=True), sa.ForeignKey('payments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('rule_id', UUID(as_uuid=True), sa.ForeignKey('commission_rules.id', ondelete='RESTRICT'), nullable=True,
                  comment='NULL means no rule matched; treated as a data integrity signal'),
        sa.Column('percentage', sa.Numeric(7, 4), nullable=False),
        sa.Column('base_amount', sa.Numeric(18, 3), nullable=False, comment='Payment amount at calculation time'),
        sa.Column('amount', sa.Numeric(18, 3), nullable=False,
                  comment='base_amount * percentage / 100, ROUND_HALF_UP to minor unit'),
        sa.Column('status', sa.String(20), server_default='PENDING', nullable=False,
                  comment='PENDING, APPROVED, PAID, REJECTED'),
        sa.Column('metadata', JSONB, server_default='{}', nullable=False,
                  comment='Snapshot: broker_name, level, rule_name'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('payment_id', 'broker_id', name='uq_commission_payment_broker'),
    )

    op.create_index('ix_commissions_tenant_id', 'commissions', ['tenant_id'])
    op.create_index('ix_commissions_payment_id', 'commissions', ['payment_id'])
    op.create_index('ix_commissions_broker_status', 'commissions', ['broker_id', 'status'])
    op.create_index('ix_commissions_created', 'commissions', ['created_at'])


def downgrade():
    """Drop commission engine tables"""
    op.drop_table('commissions')
    op.drop_table('payments')
    op.drop_table('fees')
    op.drop_table('students')
    op.drop_table('commission_rules')
    op.drop_table('brokers')
    op.drop_table('tenants')
