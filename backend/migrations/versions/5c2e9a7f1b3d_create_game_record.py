"""create game_record

Revision ID: 5c2e9a7f1b3d
Revises:
Create Date: 2026-10-16 12:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a7f1b3d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'game_record' in set(insp.get_table_names()):
        return
    op.create_table(
        'game_record',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
        sa.Column('result', sa.String(length=16), nullable=True),
        sa.Column('players', sa.Text(), nullable=True),
        sa.Column('moves', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    with op.batch_alter_table('game_record') as batch_op:
        batch_op.create_index('ix_game_record_created_at', ['created_at'])


def downgrade():
    with op.batch_alter_table('game_record') as batch_op:
        batch_op.drop_index('ix_game_record_created_at')
    op.drop_table('game_record')
