"""create game_session table

Revision ID: 3c7a91d2e4b6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7a91d2e4b6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'game_session' in set(insp.get_table_names()):
        return

    op.create_table(
        'game_session',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('game_kind', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
        sa.Column('seat1_id', sa.String(length=64), nullable=False),
        sa.Column('seat1_nickname', sa.String(length=32), nullable=False),
        sa.Column('seat2_id', sa.String(length=64), nullable=True),
        sa.Column('seat2_nickname', sa.String(length=32), nullable=True),
        sa.Column('current_actor', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('winner_id', sa.String(length=64), nullable=True),
        sa.Column('rematch_requested_by', sa.String(length=64), nullable=True),
        sa.Column('rematch_requested_at', sa.Float(), nullable=True),
        sa.Column('rematch_linked_session_id', sa.String(length=36), nullable=True),
        sa.Column('rematch_accepted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('original_session_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('last_move_at', sa.Float(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_game_session_game_kind', 'game_session', ['game_kind'])
    op.create_index('ix_game_session_status', 'game_session', ['status'])


def downgrade():
    op.drop_index('ix_game_session_status', table_name='game_session')
    op.drop_index('ix_game_session_game_kind', table_name='game_session')
    op.drop_table('game_session')
