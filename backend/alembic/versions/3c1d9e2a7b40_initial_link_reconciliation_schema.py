"""initial link reconciliation schema

Revision ID: 3c1d9e2a7b40
Revises:
Create Date: 2026-10-19 09:12:04.511203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1d9e2a7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('clients',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('first_name', sa.String(), nullable=False),
    sa.Column('last_name', sa.String(), nullable=False),
    sa.Column('email', sa.String(), nullable=True),
    sa.Column('phone_number', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('encryption_keys',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('key_name', sa.String(), nullable=False),
    sa.Column('key_value', sa.LargeBinary(length=32), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('deactivated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_encryption_keys_key_name'), 'encryption_keys', ['key_name'], unique=False)
    op.create_table('items',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('client_id', sa.String(length=36), nullable=False),
    sa.Column('plaid_item_id', sa.String(), nullable=False),
    sa.Column('institution_id', sa.String(), nullable=True),
    sa.Column('institution_name', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('last_error_code', sa.String(), nullable=True),
    sa.Column('last_error_message', sa.Text(), nullable=True),
    sa.Column('last_error_timestamp', sa.DateTime(), nullable=True),
    sa.Column('consent_expiration_time', sa.DateTime(), nullable=True),
    sa.Column('access_token', sa.LargeBinary(), nullable=False),
    sa.Column('access_token_key_id', sa.Integer(), nullable=False),
    sa.Column('transactions_cursor', sa.Text(), nullable=True),
    sa.Column('transactions_cursor_updated_at', sa.DateTime(), nullable=True),
    sa.Column('transactions_last_successful_update', sa.DateTime(), nullable=True),
    sa.Column('has_sync_updates', sa.Boolean(), nullable=False),
    sa.Column('is_archived', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['access_token_key_id'], ['encryption_keys.id'], ),
    sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_items_client_id'), 'items', ['client_id'], unique=False)
    op.create_index(op.f('ix_items_plaid_item_id'), 'items', ['plaid_item_id'], unique=True)
    op.create_index('uix_items_client_institution_live', 'items', ['client_id', 'institution_id'], unique=True,
                    sqlite_where=sa.text('is_archived = 0'), postgresql_where=sa.text('is_archived = false'))
    op.create_table('accounts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('item_id', sa.String(length=36), nullable=False),
    sa.Column('plaid_account_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('official_name', sa.String(), nullable=True),
    sa.Column('account_type', sa.String(), nullable=True),
    sa.Column('account_subtype', sa.String(), nullable=True),
    sa.Column('mask', sa.String(), nullable=True),
    sa.Column('current_balance', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('available_balance', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('credit_limit', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('iso_currency_code', sa.String(length=3), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('last_updated_datetime', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_accounts_item_id'), 'accounts', ['item_id'], unique=False)
    op.create_index(op.f('ix_accounts_plaid_account_id'), 'accounts', ['plaid_account_id'], unique=True)
    op.create_table('transactions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('account_id', sa.String(length=36), nullable=False),
    sa.Column('plaid_transaction_id', sa.String(), nullable=False),
    sa.Column('transaction_date', sa.Date(), nullable=False),
    sa.Column('authorized_date', sa.Date(), nullable=True),
    sa.Column('posted_date', sa.Date(), nullable=True),
    sa.Column('description', sa.String(), nullable=False),
    sa.Column('merchant_name', sa.String(), nullable=True),
    sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('iso_currency_code', sa.String(length=3), nullable=True),
    sa.Column('payment_channel', sa.String(), nullable=True),
    sa.Column('pending', sa.Boolean(), nullable=False),
    sa.Column('is_transfer', sa.Boolean(), nullable=False),
    sa.Column('primary_category', sa.String(), nullable=True),
    sa.Column('detailed_category', sa.String(), nullable=True),
    sa.Column('sync_status', sa.String(), nullable=False),
    sa.Column('is_removed', sa.Boolean(), nullable=False),
    sa.Column('is_archived', sa.Boolean(), nullable=False),
    sa.Column('archived_at', sa.DateTime(), nullable=True),
    sa.Column('archive_reason', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_transactions_account_id'), 'transactions', ['account_id'], unique=False)
    op.create_index(op.f('ix_transactions_plaid_transaction_id'), 'transactions', ['plaid_transaction_id'], unique=True)
    op.create_table('link_tokens',
    sa.Column('link_token', sa.String(), nullable=False),
    sa.Column('client_id', sa.String(length=36), nullable=False),
    sa.Column('hosted_link_url', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('expires_at', sa.DateTime(), nullable=True),
    sa.Column('used_at', sa.DateTime(), nullable=True),
    sa.Column('link_session_id', sa.String(), nullable=True),
    sa.Column('last_session_status', sa.String(), nullable=True),
    sa.Column('last_session_error_code', sa.String(), nullable=True),
    sa.Column('last_session_error_message', sa.Text(), nullable=True),
    sa.Column('attempt_count', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
    sa.PrimaryKeyConstraint('link_token')
    )
    op.create_index(op.f('ix_link_tokens_client_id'), 'link_tokens', ['client_id'], unique=False)
    op.create_table('link_sessions',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('link_token', sa.String(), nullable=False),
    sa.Column('link_session_id', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('error_code', sa.String(), nullable=True),
    sa.Column('error_type', sa.String(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['link_token'], ['link_tokens.link_token'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_link_sessions_link_token'), 'link_sessions', ['link_token'], unique=False)
    op.create_table('webhook_log',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('webhook_id', sa.String(), nullable=False),
    sa.Column('webhook_type', sa.String(), nullable=False),
    sa.Column('webhook_code', sa.String(), nullable=False),
    sa.Column('item_id', sa.String(length=36), nullable=True),
    sa.Column('plaid_item_id', sa.String(), nullable=True),
    sa.Column('payload', sa.JSON(), nullable=False),
    sa.Column('processed', sa.Boolean(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_webhook_log_plaid_item_id'), 'webhook_log', ['plaid_item_id'], unique=False)
    op.create_index(op.f('ix_webhook_log_webhook_id'), 'webhook_log', ['webhook_id'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_webhook_log_webhook_id'), table_name='webhook_log')
    op.drop_index(op.f('ix_webhook_log_plaid_item_id'), table_name='webhook_log')
    op.drop_table('webhook_log')
    op.drop_index(op.f('ix_link_sessions_link_token'), table_name='link_sessions')
    op.drop_table('link_sessions')
    op.drop_index(op.f('ix_link_tokens_client_id'), table_name='link_tokens')
    op.drop_table('link_tokens')
    op.drop_index(op.f('ix_transactions_plaid_transaction_id'), table_name='transactions')
    op.drop_index(op.f('ix_transactions_account_id'), table_name='transactions')
    op.drop_table('transactions')
    op.drop_index(op.f('ix_accounts_plaid_account_id'), table_name='accounts')
    op.drop_index(op.f('ix_accounts_item_id'), table_name='accounts')
    op.drop_table('accounts')
    op.drop_index('uix_items_client_institution_live', table_name='items')
    op.drop_index(op.f('ix_items_plaid_item_id'), table_name='items')
    op.drop_index(op.f('ix_items_client_id'), table_name='items')
    op.drop_table('items')
    op.drop_index(op.f('ix_encryption_keys_key_name'), table_name='encryption_keys')
    op.drop_table('encryption_keys')
    op.drop_table('clients')
