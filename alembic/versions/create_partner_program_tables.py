"""Create users, partner program and generation log tables

Revision ID: create_partner_program_tables
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_partner_program_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables of the partner program."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.Column('plan_type', sa.String(50), nullable=False),
        sa.Column('requests_used', sa.Integer(), nullable=False),
        sa.Column('requests_limit', sa.Integer(), nullable=False),
        sa.Column('flexy_requests', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'partners',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(128), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, unique=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('status_reason', sa.Text(), nullable=True),
        sa.Column('total_referrals', sa.Integer(), nullable=False),
        sa.Column('total_conversions', sa.Integer(), nullable=False),
        sa.Column('total_commission_earned', sa.BigInteger(), nullable=False),
        sa.Column('total_commission_paid', sa.BigInteger(), nullable=False),
        sa.Column('last_calculated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_partners_email', 'partners', ['email'], unique=True)
    op.create_index('ix_partners_status', 'partners', ['status'])

    op.create_table(
        'partner_codes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('partner_id', sa.String(36), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('uses', sa.Integer(), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_partner_codes_code', 'partner_codes', ['code'], unique=True)
    op.create_index('ix_partner_codes_partner_id', 'partner_codes', ['partner_id'])

    op.create_table(
        'referrals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('partner_id', sa.String(36), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('partner_code', sa.String(20), nullable=False),
        sa.Column('customer_uid', sa.String(128), nullable=False),
        sa.Column('processor_customer_id', sa.String(255), nullable=True),
        sa.Column('processor_subscription_id', sa.String(255), nullable=True),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('utm', sa.JSON(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('partner_id', 'customer_uid', name='uq_referrals_partner_customer'),
    )
    op.create_index('ix_referrals_partner_id', 'referrals', ['partner_id'])
    op.create_index('ix_referrals_customer_uid', 'referrals', ['customer_uid'])

    op.create_table(
        'referral_customers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('partner_id', sa.String(36), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('customer_uid', sa.String(128), nullable=False),
        sa.Column('referral_id', sa.String(36), sa.ForeignKey('referrals.id'), nullable=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_spent', sa.BigInteger(), nullable=False),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('partner_id', 'customer_uid', name='uq_referral_customers_partner_customer'),
    )
    op.create_index('ix_referral_customers_partner_id', 'referral_customers', ['partner_id'])
    op.create_index('ix_referral_customers_customer_uid', 'referral_customers', ['customer_uid'])

    op.create_table(
        'commission_ledger_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('partner_id', sa.String(36), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('referral_id', sa.String(36), sa.ForeignKey('referrals.id'), nullable=True),
        sa.Column('invoice_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.String(255), nullable=True),
        sa.Column('gross_amount', sa.BigInteger(), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('commission_amount', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('accrued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_transaction_id', sa.String(255), nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversal_reason', sa.Text(), nullable=True),
        sa.UniqueConstraint('partner_id', 'invoice_id', name='uq_ledger_partner_invoice'),
        sa.CheckConstraint('gross_amount > 0', name='ck_ledger_gross_positive'),
    )
    op.create_index('ix_commission_ledger_entries_partner_id', 'commission_ledger_entries', ['partner_id'])
    op.create_index('ix_commission_ledger_entries_referral_id', 'commission_ledger_entries', ['referral_id'])
    op.create_index('ix_ledger_partner_status', 'commission_ledger_entries', ['partner_id', 'status'])

    op.create_table(
        'generation_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('request_id', sa.String(255), nullable=False),
        sa.Column('kind', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_kind', sa.String(50), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('request_data', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_generation_logs_user_id', 'generation_logs', ['user_id'])


def downgrade() -> None:
    """Drop all tables of the partner program."""
    op.drop_table('generation_logs')
    op.drop_table('commission_ledger_entries')
    op.drop_table('referral_customers')
    op.drop_table('referrals')
    op.drop_table('partner_codes')
    op.drop_table('partners')
    op.drop_table('users')
