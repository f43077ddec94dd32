"""Initial messaging schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, conversations and messages."""

    # Users table (owned by the account service, mirrored here for local setups)
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Conversations table
    op.create_table(
        'conversations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_low', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_high', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('last_message_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['participant_low'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['participant_high'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('participant_low', 'participant_high', name='uq_conversations_participants'),
        sa.CheckConstraint('participant_low < participant_high', name='participant_order_check'),
    )
    op.create_index('ix_conversations_participant_low', 'conversations', ['participant_low'])
    op.create_index('ix_conversations_participant_high', 'conversations', ['participant_high'])
    op.create_index('ix_conversations_last_message_at', 'conversations', ['last_message_at'])

    # Messages table
    message_type = postgresql.ENUM('text', 'image', 'system', name='message_type')
    op.create_table(
        'messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('conversation_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sender_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', message_type, nullable=False, server_default='text'),
        sa.Column('client_message_id', sa.String(64), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('sender_id', 'client_message_id', name='uq_messages_sender_client_id'),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index(
        'ix_messages_conversation_created',
        'messages',
        ['conversation_id', 'created_at', 'id'],
    )


def downgrade() -> None:
    """Drop all messaging tables."""
    op.drop_table('messages')
    sa.Enum(name='message_type').drop(op.get_bind(), checkfirst=True)
    op.drop_table('conversations')
    op.drop_table('users')
