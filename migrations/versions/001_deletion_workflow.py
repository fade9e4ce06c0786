"""create environments and deletion workflow tables

Revision ID: 001_deletion_workflow
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_deletion_workflow'
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_STATE_PREDICATE = sa.text("state IN ('pending', 'approved')")


def upgrade():
    op.create_table(
        'projects',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_projects'),
    )
    op.create_table(
        'environments',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['project_id'], ['projects.id'],
            name='fk_environments_project_id_projects', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_environments'),
    )
    op.create_index('ix_environments_project_id', 'environments', ['project_id'], unique=False)

    op.create_table(
        'environment_users',
        sa.Column('environment_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['environment_id'], ['environments.id'],
            name='fk_environment_users_environment_id_environments', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('environment_id', 'user_id', name='pk_environment_users'),
    )

    op.create_table(
        'ingested_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('environment_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['environment_id'], ['environments.id'],
            name='fk_ingested_events_environment_id_environments', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_ingested_events'),
    )
    op.create_index('ix_ingested_events_project_id', 'ingested_events', ['project_id'], unique=False)
    op.create_index(
        'ix_ingested_events_environment_received',
        'ingested_events', ['environment_id', 'received_at'], unique=False,
    )

    # Enum columns are plain VARCHAR (native_enum=False) holding lowercase values.
    op.create_table(
        'deletion_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('resource_kind', sa.String(length=11), nullable=False),
        sa.Column('resource_id', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=8), nullable=False),
        sa.Column('backoff_interval_seconds', sa.Integer(), nullable=False),
        sa.Column('requested_by_user_id', sa.Uuid(), nullable=True),
        sa.Column('last_execution_error', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            'backoff_interval_seconds > 0',
            name='ck_deletion_requests_backoff_interval_positive',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_deletion_requests'),
    )
    op.create_index('ix_deletion_requests_project_id', 'deletion_requests', ['project_id'], unique=False)
    op.create_index(
        'ix_deletion_requests_state_created',
        'deletion_requests', ['state', 'created_at'], unique=False,
    )
    op.create_index(
        'ix_deletion_requests_state_expires',
        'deletion_requests', ['state', 'expires_at'], unique=False,
    )
    op.create_index(
        'uq_deletion_requests_active_resource',
        'deletion_requests', ['resource_kind', 'resource_id'],
        unique=True,
        postgresql_where=_ACTIVE_STATE_PREDICATE,
        sqlite_where=_ACTIVE_STATE_PREDICATE,
    )

    op.create_table(
        'deletion_confirmations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('deletion_request_id', sa.Uuid(), nullable=False),
        sa.Column('approver_id', sa.Uuid(), nullable=False),
        sa.Column('visible_code', sa.String(length=64), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['deletion_request_id'], ['deletion_requests.id'],
            name='fk_deletion_confirmations_deletion_request_id_deletion_requests',
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_deletion_confirmations'),
        sa.UniqueConstraint(
            'deletion_request_id', 'approver_id',
            name='uq_deletion_confirmation_request_approver',
        ),
    )
    op.create_index(
        'ix_deletion_confirmations_deletion_request_id',
        'deletion_confirmations', ['deletion_request_id'], unique=False,
    )


def downgrade():
    op.drop_index('ix_deletion_confirmations_deletion_request_id', table_name='deletion_confirmations')
    op.drop_table('deletion_confirmations')
    op.drop_index('uq_deletion_requests_active_resource', table_name='deletion_requests')
    op.drop_index('ix_deletion_requests_state_expires', table_name='deletion_requests')
    op.drop_index('ix_deletion_requests_state_created', table_name='deletion_requests')
    op.drop_index('ix_deletion_requests_project_id', table_name='deletion_requests')
    op.drop_table('deletion_requests')
    op.drop_index('ix_ingested_events_environment_received', table_name='ingested_events')
    op.drop_index('ix_ingested_events_project_id', table_name='ingested_events')
    op.drop_table('ingested_events')
    op.drop_table('environment_users')
    op.drop_index('ix_environments_project_id', table_name='environments')
    op.drop_table('environments')
    op.drop_table('projects')
