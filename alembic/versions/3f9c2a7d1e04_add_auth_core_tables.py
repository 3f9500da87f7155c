"""add_auth_core_tables

Revision ID: 3f9c2a7d1e04
Revises:
Create Date: 2026-10-17 09:12:31.482107

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1e04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the identity record store: users, accounts, verifiers,
    verification codes, spent-secret tombstones, sessions and refresh tokens.
    """
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('image', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('email_verification_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('phone_verification_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_phone', 'users', ['phone'])
    # At most one user per verified email / phone
    op.create_index(
        'uq_users_verified_email', 'users', ['email'], unique=True,
        postgresql_where=sa.text('email_verification_time IS NOT NULL'),
    )
    op.create_index(
        'uq_users_verified_phone', 'users', ['phone'], unique=True,
        postgresql_where=sa.text('phone_verification_time IS NOT NULL'),
    )

    op.create_table(
        'auth_accounts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('provider_account_id', sa.String(), nullable=False),
        sa.Column('secret', sa.String(), nullable=True),
        sa.Column('provider_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
    )
    op.create_index('ix_auth_accounts_id', 'auth_accounts', ['id'])
    op.create_index('ix_auth_accounts_user_id', 'auth_accounts', ['user_id'])
    op.create_index(
        'uq_auth_accounts_provider_account', 'auth_accounts', ['provider', 'provider_account_id'], unique=True
    )

    op.create_table(
        'auth_verifiers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('signature', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expiration_time', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_verifiers_id', 'auth_verifiers', ['id'])
    op.create_index('ix_auth_verifiers_expiration_time', 'auth_verifiers', ['expiration_time'])

    op.create_table(
        'auth_verification_codes',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('identifier', sa.String(), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=True),
        sa.Column('code_hash', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('verifier_id', sa.UUID(), nullable=True),
        sa.Column('expiration_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['auth_accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['verifier_id'], ['auth_verifiers.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_auth_verification_codes_id', 'auth_verification_codes', ['id'])
    op.create_index('ix_auth_verification_codes_code_provider', 'auth_verification_codes', ['code_hash', 'provider'])
    op.create_index(
        'uq_auth_verification_codes_provider_identifier', 'auth_verification_codes', ['provider', 'identifier'],
        unique=True
    )
    op.create_index('ix_auth_verification_codes_expiration_time', 'auth_verification_codes', ['expiration_time'])

    spent_reason = sa.Enum('redeemed', 'invalidated', 'consumed', name='spentreason')
    op.create_table(
        'auth_spent_secrets',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('scope', sa.String(), nullable=False),
        sa.Column('secret_hash', sa.String(length=64), nullable=False),
        sa.Column('identifier', sa.String(), nullable=True),
        sa.Column('reason', spent_reason, nullable=False),
        sa.Column('spent_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_spent_secrets_scope_hash', 'auth_spent_secrets', ['scope', 'secret_hash'])
    op.create_index('ix_auth_spent_secrets_spent_at', 'auth_spent_secrets', ['spent_at'])

    op.create_table(
        'auth_sessions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('creation_time', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expiration_time', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
    )
    op.create_index('ix_auth_sessions_id', 'auth_sessions', ['id'])
    op.create_index('ix_auth_sessions_user_id', 'auth_sessions', ['user_id'])

    op.create_table(
        'auth_refresh_tokens',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('parent_id', sa.UUID(), nullable=True),
        sa.Column('secret_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expiration_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rotated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['session_id'], ['auth_sessions.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_auth_refresh_tokens_id', 'auth_refresh_tokens', ['id'])
    op.create_index('ix_auth_refresh_tokens_session_id', 'auth_refresh_tokens', ['session_id'])
    op.create_index('ix_auth_refresh_tokens_expiration_time', 'auth_refresh_tokens', ['expiration_time'])


def downgrade() -> None:
    """
    Drop the identity record store.
    """
    op.drop_table('auth_refresh_tokens')
    op.drop_table('auth_sessions')
    op.drop_table('auth_spent_secrets')
    sa.Enum(name='spentreason').drop(op.get_bind(), checkfirst=True)
    op.drop_table('auth_verification_codes')
    op.drop_table('auth_verifiers')
    op.drop_table('auth_accounts')
    op.drop_table('users')
