"""Add event_embeddings and cross_references tables

Revision ID: 3f9c1a7d2b64
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f9c1a7d2b64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the vector store and the cross-reference table."""
    op.create_table(
        'event_embeddings',
        sa.Column('embedding_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('event_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('vector', sa.JSON(), nullable=True),
        sa.Column('provider', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('model', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('dimension', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('embedding_id'),
    )
    op.create_index(op.f('ix_event_embeddings_event_id'), 'event_embeddings', ['event_id'], unique=True)
    op.create_index(op.f('ix_event_embeddings_provider'), 'event_embeddings', ['provider'], unique=False)

    op.create_table(
        'cross_references',
        sa.Column('reference_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('event_id_1', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('event_id_2', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('relationship_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('analysis_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('reference_id'),
        sa.UniqueConstraint('event_id_1', 'event_id_2', 'relationship_type', name='uq_cross_ref_pair_type'),
        sa.CheckConstraint('event_id_1 < event_id_2', name='ck_cross_ref_canonical_order'),
        sa.CheckConstraint('confidence_score >= 0 AND confidence_score <= 1', name='ck_cross_ref_confidence'),
    )
    op.create_index(op.f('ix_cross_references_event_id_1'), 'cross_references', ['event_id_1'], unique=False)
    op.create_index(op.f('ix_cross_references_event_id_2'), 'cross_references', ['event_id_2'], unique=False)
    op.create_index(
        op.f('ix_cross_references_relationship_type'), 'cross_references', ['relationship_type'], unique=False
    )


def downgrade() -> None:
    """Drop both tables."""
    op.drop_index(op.f('ix_cross_references_relationship_type'), table_name='cross_references')
    op.drop_index(op.f('ix_cross_references_event_id_2'), table_name='cross_references')
    op.drop_index(op.f('ix_cross_references_event_id_1'), table_name='cross_references')
    op.drop_table('cross_references')
    op.drop_index(op.f('ix_event_embeddings_provider'), table_name='event_embeddings')
    op.drop_index(op.f('ix_event_embeddings_event_id'), table_name='event_embeddings')
    op.drop_table('event_embeddings')
