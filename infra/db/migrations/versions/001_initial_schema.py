"""Initial schema for Expense Terminal

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Transactions (one row per imported card / bank line)
    op.create_table(
        'transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tax_year', sa.Integer, nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('vendor', sa.String(500), nullable=False),
        sa.Column('vendor_normalized', sa.String(64)),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('kind', sa.String(16), nullable=False, server_default='expense'),
        sa.Column('category', sa.String(200)),
        sa.Column('schedule_c_line', sa.String(50)),
        sa.Column('ai_confidence', sa.Float),
        sa.Column('ai_reasoning', sa.Text),
        sa.Column('ai_suggestions', sa.JSON),
        sa.Column('is_meal', sa.Boolean),
        sa.Column('is_travel', sa.Boolean),
        sa.Column('deduction_percent', sa.Numeric(5, 2), server_default='100'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),  # pending, completed, auto_sorted, personal
        sa.Column('quick_label', sa.String(500)),
        sa.Column('business_purpose', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('auto_sort_rule_id', postgresql.UUID(as_uuid=True)),
        sa.Column('source', sa.String(50)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("kind IN ('expense', 'income')", name='ck_transactions_kind'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'auto_sorted', 'personal')",
            name='ck_transactions_status',
        ),
        sa.CheckConstraint('deduction_percent BETWEEN 0 AND 100', name='ck_transactions_deduction_percent'),
    )
    op.create_index('idx_transactions_owner_year_status', 'transactions', ['owner_id', 'tax_year', 'status'])
    op.create_index('idx_transactions_owner_vendor', 'transactions', ['owner_id', 'vendor_normalized'])

    # Auto-sort rules (one per owner + vendor fingerprint)
    op.create_table(
        'auto_sort_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('vendor_pattern', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False, server_default='expense'),
        sa.Column('quick_label', sa.String(500), nullable=False),
        sa.Column('business_purpose', sa.Text),
        sa.Column('category', sa.String(200)),
        sa.Column('deduction_percent', sa.Numeric(5, 2)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("kind IN ('expense', 'income')", name='ck_auto_sort_rules_kind'),
    )
    op.create_unique_constraint('uq_auto_sort_rules_owner_vendor', 'auto_sort_rules', ['owner_id', 'vendor_pattern'])

    # Calculator deductions (mileage, home office, QBI, manual)
    op.create_table(
        'deductions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(200), nullable=False),
        sa.Column('tax_year', sa.Integer, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_savings', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('metadata', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_deductions_owner_year', 'deductions', ['owner_id', 'tax_year'])

    op.create_table(
        'tax_year_settings',
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tax_year', sa.Integer, primary_key=True),
        sa.Column('tax_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('tax_rate BETWEEN 0 AND 1', name='ck_tax_year_settings_rate'),
    )

    # Classification cache keyed by sha256(fingerprint || rounded amount || kind)
    op.create_table(
        'classification_cache',
        sa.Column('lookup_hash', sa.String(64), primary_key=True),
        sa.Column('vendor_normalized', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('result', postgresql.JSONB, nullable=False),
        sa.Column('times_seen', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_seen', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )


def downgrade():
    op.drop_table('classification_cache')
    op.drop_table('tax_year_settings')
    op.drop_index('idx_deductions_owner_year', table_name='deductions')
    op.drop_table('deductions')
    op.drop_constraint('uq_auto_sort_rules_owner_vendor', 'auto_sort_rules', type_='unique')
    op.drop_table('auto_sort_rules')
    op.drop_index('idx_transactions_owner_vendor', table_name='transactions')
    op.drop_index('idx_transactions_owner_year_status', table_name='transactions')
    op.drop_table('transactions')
