"""create report tables

Revision ID: 4e1a9c2d7b30
Revises:
Create Date: 2026-03-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4e1a9c2d7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


job_status = sa.Enum('RUNNING', 'COMPLETED', 'FAILED', name='jobstatus')
sentiment = sa.Enum('positive', 'negative', 'neutral', name='sentiment')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'report_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('query_json', sa.JSON(), nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_results', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(), nullable=True),
        sa.Column('share_token', sa.String(length=64), nullable=True),
        sa.Column('share_token_created_at', sa.DateTime(), nullable=True),
        sa.Column('share_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('top_post_comments_json', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('share_token'),
    )
    op.create_index(op.f('ix_report_jobs_user_id'), 'report_jobs', ['user_id'], unique=False)
    # Duplicate-run guard looks up RUNNING jobs per user by start time
    op.create_index(
        'ix_report_jobs_user_status_started', 'report_jobs',
        ['user_id', 'status', 'started_at'], unique=False,
    )

    op.create_table(
        'searches',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('sources', sa.JSON(), nullable=False),
        sa.Column('filters_json', sa.JSON(), nullable=True),
        sa.Column('report_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['report_id'], ['report_jobs.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id'),
    )
    op.create_index(op.f('ix_searches_user_id'), 'searches', ['user_id'], unique=False)

    op.create_table(
        'search_posts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('search_id', sa.Uuid(), nullable=False),
        sa.Column('post_id', sa.String(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('author', sa.String(), nullable=False),
        sa.Column('author_handle', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('engagement', sa.JSON(), nullable=True),
        sa.Column('sentiment', sentiment, nullable=True),
        sa.ForeignKeyConstraint(['search_id'], ['searches.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_search_posts_search_id'), 'search_posts', ['search_id'], unique=False)

    op.create_table(
        'insights',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('output_json', sa.JSON(), nullable=False),
        sa.Column('model', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['report_jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_insights_job_id'), 'insights', ['job_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_insights_job_id'), table_name='insights')
    op.drop_table('insights')
    op.drop_index(op.f('ix_search_posts_search_id'), table_name='search_posts')
    op.drop_table('search_posts')
    op.drop_index(op.f('ix_searches_user_id'), table_name='searches')
    op.drop_table('searches')
    op.drop_index('ix_report_jobs_user_status_started', table_name='report_jobs')
    op.drop_index(op.f('ix_report_jobs_user_id'), table_name='report_jobs')
    op.drop_table('report_jobs')
    op.drop_table('users')
    sentiment.drop(op.get_bind(), checkfirst=True)
    job_status.drop(op.get_bind(), checkfirst=True)
