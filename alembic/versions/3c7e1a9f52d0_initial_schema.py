"""initial_schema

Revision ID: 3c7e1a9f52d0
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c7e1a9f52d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('user_id', sa.BigInteger(), autoincrement=False, nullable=False, comment='Telegram user ID'),
        sa.Column('display_name', sa.String(length=255), nullable=True, comment='Username or first name, best effort'),
        sa.Column('payout_address', sa.String(length=512), nullable=True, comment='Validated Zcash payout address'),
        sa.Column('total_received', sa.Numeric(precision=28, scale=8), nullable=False, comment='Sum of approved payouts'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id')
    )

    op.create_table(
        'wallet_mappings',
        sa.Column('wallet_address', sa.String(length=128), nullable=False, comment='Case-normalized wallet address'),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('chain_family', sa.String(length=20), nullable=True, comment='evm / solana / bitcoin'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('wallet_address')
    )
    op.create_index(op.f('ix_wallet_mappings_user_id'), 'wallet_mappings', ['user_id'], unique=False)

    op.create_table(
        'transfers',
        sa.Column('chain', sa.String(length=20), nullable=False),
        sa.Column('tx_ref', sa.String(length=128), nullable=False, comment='Tx hash or signature (EVM: lowercase)'),
        sa.Column('from_address', sa.String(length=128), nullable=False),
        sa.Column('to_address', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.Numeric(precision=38, scale=18), nullable=False, comment='Native units'),
        sa.Column('observed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('skip_reason', sa.String(length=50), nullable=True, comment='Set when processed without a claim token'),
        sa.PrimaryKeyConstraint('chain', 'tx_ref')
    )
    op.create_index(op.f('ix_transfers_from_address'), 'transfers', ['from_address'], unique=False)
    op.create_index('ix_transfers_unprocessed', 'transfers', ['processed', 'observed_at'], unique=False)

    op.create_table(
        'claim_tokens',
        sa.Column('token_id', sa.String(length=128), nullable=False),
        sa.Column('issued_to_user_id', sa.BigInteger(), nullable=False),
        sa.Column('issued_to_username', sa.String(length=255), nullable=True),
        sa.Column('transfer_chain', sa.String(length=20), nullable=False),
        sa.Column('transfer_tx_ref', sa.String(length=128), nullable=False),
        sa.Column('reward_amount_at_issuance', sa.Numeric(precision=28, scale=8), nullable=False, comment='Advisory payout estimate at issuance'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('redeemed', sa.Boolean(), nullable=False),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_by_user_id', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['issued_to_user_id'], ['users.user_id']),
        sa.ForeignKeyConstraint(
            ['transfer_chain', 'transfer_tx_ref'],
            ['transfers.chain', 'transfers.tx_ref'],
            name='fk_claim_tokens_transfer',
        ),
        sa.PrimaryKeyConstraint('token_id'),
        sa.UniqueConstraint('transfer_chain', 'transfer_tx_ref', name='uq_claim_tokens_transfer')
    )
    op.create_index(op.f('ix_claim_tokens_issued_to_user_id'), 'claim_tokens', ['issued_to_user_id'], unique=False)

    op.create_table(
        'pending_payouts',
        sa.Column('claim_id', sa.String(length=64), nullable=False),
        sa.Column('source_token_id', sa.String(length=128), nullable=False),
        sa.Column('beneficiary_user_id', sa.BigInteger(), nullable=False),
        sa.Column('beneficiary_username', sa.String(length=255), nullable=True),
        sa.Column('source_coin', sa.String(length=10), nullable=False),
        sa.Column('source_amount', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('source_value', sa.Numeric(precision=28, scale=8), nullable=False, comment='Source amount in reference currency at redemption'),
        sa.Column('payout_amount', sa.Numeric(precision=28, scale=8), nullable=False, comment='After fee'),
        sa.Column('payout_address', sa.String(length=512), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by', sa.BigInteger(), nullable=True),
        sa.Column('approval_proof', sa.String(length=255), nullable=True),
        sa.Column('rejection_reason', sa.String(length=500), nullable=True),
        sa.Column('refund_reference', sa.String(length=255), nullable=True),
        sa.CheckConstraint(
            "status <> 'approved' OR approval_proof IS NOT NULL",
            name='ck_pending_payouts_approved_has_proof',
        ),
        sa.CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name='ck_pending_payouts_rejected_has_reason',
        ),
        sa.ForeignKeyConstraint(['source_token_id'], ['claim_tokens.token_id']),
        sa.PrimaryKeyConstraint('claim_id'),
        sa.UniqueConstraint('source_token_id')
    )
    op.create_index(op.f('ix_pending_payouts_beneficiary_user_id'), 'pending_payouts', ['beneficiary_user_id'], unique=False)
    op.create_index(op.f('ix_pending_payouts_status'), 'pending_payouts', ['status'], unique=False)
    op.create_index('ix_pending_payouts_status_created', 'pending_payouts', ['status', 'created_at'], unique=False)

    op.create_table(
        'admin_sessions',
        sa.Column('operator_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('pending_step', sa.String(length=40), nullable=False),
        sa.Column('step_claim_id', sa.String(length=64), nullable=True),
        sa.Column('step_reason', sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint('operator_id')
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('admin_sessions')
    op.drop_index('ix_pending_payouts_status_created', table_name='pending_payouts')
    op.drop_index(op.f('ix_pending_payouts_status'), table_name='pending_payouts')
    op.drop_index(op.f('ix_pending_payouts_beneficiary_user_id'), table_name='pending_payouts')
    op.drop_table('pending_payouts')
    op.drop_index(op.f('ix_claim_tokens_issued_to_user_id'), table_name='claim_tokens')
    op.drop_table('claim_tokens')
    op.drop_index('ix_transfers_unprocessed', table_name='transfers')
    op.drop_index(op.f('ix_transfers_from_address'), table_name='transfers')
    op.drop_table('transfers')
    op.drop_index(op.f('ix_wallet_mappings_user_id'), table_name='wallet_mappings')
    op.drop_table('wallet_mappings')
    op.drop_table('users')
