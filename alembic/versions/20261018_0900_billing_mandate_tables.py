"""Billing, ledger, quote and administrative mandate tables

Revision ID: 20261018_0900_billing_mandate_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates:
- plans, addons, plan_addon_access: pricing catalog
- tenants, tenant_addons: billing subject and explicit add-on quantities
- billing_changes, ledger_entries: prorated changes and the append-only ledger
- quotes, quote_line_items
- mandate_orders, mandate_subscriptions, mandate_invoices, mandate_reminders,
  mandate_documents, mandate_activities
- document_sequences: DV/BC/FA numbering
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261018_0900_billing_mandate_tables'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'billinginterval': ('MONTHLY', 'YEARLY'),
    'billingstatus': ('TRIAL', 'ACTIVE', 'SUSPENDED', 'CANCELLED'),
    'paymentmethod': ('STRIPE', 'BANK_TRANSFER', 'CHECK', 'ADMINISTRATIVE_MANDATE'),
    'billingchangetype': ('PLAN_CHANGE', 'ADDON_CHANGE'),
    'billingchangestatus': ('PENDING', 'APPLIED', 'CANCELLED'),
    'ledgerentrytype': ('CREDIT', 'DEBIT'),
    'quotestatus': ('DRAFT', 'SENT', 'ACCEPTED', 'REJECTED'),
    'mandateorderstatus': ('PENDING_VALIDATION', 'PENDING_BC', 'ACCEPTED', 'INVOICED', 'REJECTED'),
    'mandateordersource': ('SIGNUP', 'QUOTE', 'LEAD', 'RENEWAL', 'MANUAL'),
    'mandatesubscriptionstatus': ('ACTIVE', 'CANCELLED'),
    'mandateinvoicestatus': ('DRAFT', 'SENT', 'MANDATED', 'PAID', 'CANCELLED'),
    'remindertype': ('DUNNING', 'RENEWAL'),
    'mandatedocumenttype': ('PURCHASE_ORDER', 'ENGAGEMENT', 'OTHER'),
    'mandateactivitytype': (
        'ORDER_CREATED', 'ORDER_VALIDATED', 'ORDER_REJECTED', 'ORDER_DELETED',
        'TENANT_LINKED', 'BC_UPLOADED', 'BC_VALIDATED', 'SUBSCRIPTION_ACTIVATED',
        'SUBSCRIPTION_CANCELLED', 'INVOICE_GENERATED', 'INVOICE_SENT',
        'INVOICE_MANDATED', 'INVOICE_CANCELLED', 'REMINDER_SENT',
        'PAYMENT_RECEIVED', 'RENEWAL_INITIATED', 'STATUS_CHANGED', 'NOTE_ADDED',
    ),
    'actortype': ('superadmin', 'tenant_admin', 'client', 'system'),
}


def _enum(name):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _soft_delete():
    return [
        sa.Column('is_deleted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', postgresql.UUID(as_uuid=True), nullable=True),
    ]


def _fk(column, target, nullable=True, ondelete=None, index=False):
    return sa.Column(
        column,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
        index=index,
    )


def _money(column, nullable=False):
    return sa.Column(column, sa.Numeric(12, 2), nullable=nullable)


def upgrade() -> None:
    """Create billing and mandate tables."""
    connection = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(connection, checkfirst=True)

    # ===========================================
    # CATALOG
    # ===========================================
    op.create_table(
        'plans',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100), nullable=False),
        _money('monthly_price'),
        _money('yearly_price'),
        sa.Column('max_admins', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('associations_included', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('communes_included', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        'addons',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100), nullable=False),
        _money('default_monthly_price'),
        _money('default_yearly_price'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        'plan_addon_access',
        _id(),
        _fk('plan_id', 'plans.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('addon_id', 'addons.id', nullable=False, ondelete='CASCADE'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        _money('monthly_price', nullable=True),
        _money('yearly_price', nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('plan_id', 'addon_id', name='uq_plan_addon_access_plan_addon'),
    )

    # ===========================================
    # TENANTS
    # ===========================================
    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('siret', sa.String(14), nullable=True),
        sa.Column('contact_email', sa.String(255), nullable=True),
        _fk('subscription_plan_id', 'plans.id', ondelete='SET NULL'),
        sa.Column('billing_interval', _enum('billinginterval'), nullable=True),
        sa.Column('billing_status', _enum('billingstatus'), nullable=False, server_default='TRIAL'),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('purchased_admins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchased_associations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchased_communes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('billing_address', sa.String(500), nullable=True),
        sa.Column('billing_service', sa.String(255), nullable=True),
        sa.Column('accounting_contact_name', sa.String(255), nullable=True),
        sa.Column('accounting_contact_email', sa.String(255), nullable=True),
        sa.Column('accounting_contact_phone', sa.String(50), nullable=True),
        sa.Column('service_code', sa.String(100), nullable=True),
        sa.Column('engagement_number', sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'tenant_addons',
        _id(),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('addon_id', 'addons.id', nullable=False, ondelete='CASCADE'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'addon_id', name='uq_tenant_addons_tenant_addon'),
        sa.CheckConstraint('quantity >= 0', name='ck_tenant_addons_quantity_non_negative'),
    )

    # ===========================================
    # BILLING CHANGES & LEDGER
    # ===========================================
    op.create_table(
        'billing_changes',
        _id(),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        sa.Column('change_type', _enum('billingchangetype'), nullable=False),
        _fk('from_plan_id', 'plans.id'),
        _fk('to_plan_id', 'plans.id'),
        sa.Column('from_billing_interval', _enum('billinginterval'), nullable=True),
        sa.Column('to_billing_interval', _enum('billinginterval'), nullable=True),
        _fk('addon_id', 'addons.id'),
        sa.Column('from_quantity', sa.Integer(), nullable=True),
        sa.Column('to_quantity', sa.Integer(), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=False, index=True),
        _money('prorata_credit'),
        _money('prorata_debit'),
        sa.Column('days_in_period', sa.Integer(), nullable=True),
        sa.Column('days_remaining', sa.Integer(), nullable=True),
        sa.Column('status', _enum('billingchangestatus'), nullable=False, server_default='PENDING', index=True),
        sa.Column('payment_method', _enum('paymentmethod'), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requested_by', sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'ledger_entries',
        _id(),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('billing_change_id', 'billing_changes.id', index=True),
        sa.Column('entry_type', _enum('ledgerentrytype'), nullable=False),
        _money('amount'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.CheckConstraint('amount >= 0', name='ck_ledger_entries_amount_non_negative'),
    )

    # ===========================================
    # QUOTES
    # ===========================================
    op.create_table(
        'quotes',
        _id(),
        sa.Column('quote_number', sa.String(30), nullable=False, unique=True),
        _fk('tenant_id', 'tenants.id', ondelete='SET NULL', index=True),
        _fk('plan_id', 'plans.id', nullable=False),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('client_email', sa.String(255), nullable=False),
        sa.Column('client_siret', sa.String(14), nullable=True),
        sa.Column('client_address', sa.String(500), nullable=True),
        sa.Column('status', _enum('quotestatus'), nullable=False, server_default='DRAFT'),
        sa.Column('billing_interval', _enum('billinginterval'), nullable=False, server_default='YEARLY'),
        _money('subtotal'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False),
        _money('tax_amount'),
        _money('total'),
        sa.Column('valid_until', sa.Date(), nullable=False),
        sa.Column('payment_method', _enum('paymentmethod'), nullable=True),
        sa.Column('public_token', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_by_name', sa.String(255), nullable=True),
        sa.Column('accepted_by_email', sa.String(255), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('administrative_mandate_status', sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'quote_line_items',
        _id(),
        _fk('quote_id', 'quotes.id', nullable=False, ondelete='CASCADE', index=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        _fk('plan_id', 'plans.id'),
        _fk('addon_id', 'addons.id'),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        _money('unit_price'),
        _money('total'),
        *_timestamps(),
    )

    # ===========================================
    # ADMINISTRATIVE MANDATE
    # ===========================================
    op.create_table(
        'mandate_orders',
        _id(),
        sa.Column('order_number', sa.String(30), nullable=False, unique=True),
        sa.Column('commande_number', sa.String(30), nullable=True, unique=True),
        sa.Column('source', _enum('mandateordersource'), nullable=False, server_default='MANUAL'),
        _fk('quote_id', 'quotes.id', ondelete='SET NULL'),
        _fk('tenant_id', 'tenants.id', ondelete='SET NULL', index=True),
        _fk('plan_id', 'plans.id', nullable=False),
        sa.Column('status', _enum('mandateorderstatus'), nullable=False,
                  server_default='PENDING_VALIDATION', index=True),
        sa.Column('billing_cycle', _enum('billinginterval'), nullable=False, server_default='YEARLY'),
        _money('plan_amount'),
        _money('addons_amount'),
        sa.Column('addons_snapshot', sa.Text(), nullable=False, server_default='[]'),
        _money('annual_amount'),
        _money('discount_amount'),
        _money('final_amount'),
        sa.Column('client_name', sa.String(255), nullable=True),
        sa.Column('client_siret', sa.String(14), nullable=True),
        sa.Column('client_address', sa.String(500), nullable=True),
        sa.Column('billing_service', sa.String(255), nullable=True),
        sa.Column('accounting_contact_name', sa.String(255), nullable=True),
        sa.Column('accounting_contact_email', sa.String(255), nullable=True),
        sa.Column('accounting_contact_phone', sa.String(50), nullable=True),
        sa.Column('purchase_order_number', sa.String(100), nullable=True),
        sa.Column('engagement_number', sa.String(100), nullable=True),
        sa.Column('service_code', sa.String(100), nullable=True),
        sa.Column('client_validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_by', sa.String(100), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )
    op.create_table(
        'mandate_subscriptions',
        _id(),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('order_id', 'mandate_orders.id', nullable=False),
        _fk('plan_id', 'plans.id', nullable=False),
        sa.Column('status', _enum('mandatesubscriptionstatus'), nullable=False,
                  server_default='ACTIVE', index=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False, index=True),
        _fk('renewal_order_id', 'mandate_orders.id'),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_by', sa.String(100), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'mandate_invoices',
        _id(),
        sa.Column('invoice_number', sa.String(30), nullable=False, unique=True),
        _fk('order_id', 'mandate_orders.id', nullable=False),
        _fk('subscription_id', 'mandate_subscriptions.id', nullable=False),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        sa.Column('status', _enum('mandateinvoicestatus'), nullable=False, server_default='DRAFT'),
        _money('plan_amount'),
        _money('addons_amount'),
        sa.Column('addons_snapshot', sa.Text(), nullable=False, server_default='[]'),
        _money('subtotal'),
        _money('discount_amount'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False),
        _money('tax_amount'),
        _money('total_amount'),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('client_name', sa.String(255), nullable=True),
        sa.Column('client_siret', sa.String(14), nullable=True),
        sa.Column('client_address', sa.String(500), nullable=True),
        sa.Column('billing_service', sa.String(255), nullable=True),
        sa.Column('purchase_order_number', sa.String(100), nullable=True),
        sa.Column('engagement_number', sa.String(100), nullable=True),
        sa.Column('service_code', sa.String(100), nullable=True),
        sa.Column('emitter_name', sa.String(255), nullable=True),
        sa.Column('emitter_address', sa.String(500), nullable=True),
        sa.Column('emitter_siret', sa.String(14), nullable=True),
        sa.Column('emitter_tva', sa.String(30), nullable=True),
        sa.Column('emitter_iban', sa.String(40), nullable=True),
        sa.Column('emitter_bic', sa.String(15), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('mandated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )
    op.create_table(
        'mandate_reminders',
        _id(),
        _fk('tenant_id', 'tenants.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('subscription_id', 'mandate_subscriptions.id', nullable=False, index=True),
        _fk('invoice_id', 'mandate_invoices.id', index=True),
        sa.Column('reminder_type', _enum('remindertype'), nullable=False),
        sa.Column('reminder_level', sa.Integer(), nullable=False),
        sa.Column('scheduled_for', sa.Date(), nullable=False, index=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_to', sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'mandate_documents',
        _id(),
        _fk('order_id', 'mandate_orders.id', nullable=False, ondelete='CASCADE', index=True),
        _fk('tenant_id', 'tenants.id', ondelete='SET NULL'),
        sa.Column('document_type', _enum('mandatedocumenttype'), nullable=False, server_default='PURCHASE_ORDER'),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('uploaded_by', sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'mandate_activities',
        _id(),
        _fk('tenant_id', 'tenants.id', ondelete='SET NULL', index=True),
        _fk('order_id', 'mandate_orders.id', ondelete='SET NULL', index=True),
        _fk('subscription_id', 'mandate_subscriptions.id', ondelete='SET NULL'),
        _fk('invoice_id', 'mandate_invoices.id', ondelete='SET NULL'),
        sa.Column('activity_type', _enum('mandateactivitytype'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('old_value', sa.String(50), nullable=True),
        sa.Column('new_value', sa.String(50), nullable=True),
        sa.Column('performed_by', sa.String(100), nullable=True),
        sa.Column('performed_by_type', _enum('actortype'), nullable=False, server_default='system'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )

    # ===========================================
    # NUMBERING
    # ===========================================
    op.create_table(
        'document_sequences',
        _id(),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(5), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('year', 'prefix', name='uq_document_sequences_year_prefix'),
    )


def downgrade() -> None:
    """Drop billing and mandate tables."""
    for table in (
        'document_sequences',
        'mandate_activities',
        'mandate_documents',
        'mandate_reminders',
        'mandate_invoices',
        'mandate_subscriptions',
        'mandate_orders',
        'quote_line_items',
        'quotes',
        'ledger_entries',
        'billing_changes',
        'tenant_addons',
        'tenants',
        'plan_addon_access',
        'addons',
        'plans',
    ):
        op.drop_table(table)

    connection = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(connection, checkfirst=True)
