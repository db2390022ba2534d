"""Initial schema: projects, proposals, project tree, tasks, agents and audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

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

PROJECT_STATUS = ('ideation', 'strategy_review', 'design', 'development', 'testing', 'deployed')
PROPOSAL_TYPE = ('strategy', 'design', 'task_assignment')
PROPOSAL_STATUS = ('pending_review', 'approved', 'rejected', 'revised')
COMPONENT_STATUS = ('planned', 'designing', 'in_development', 'testing', 'deployed')
TASK_STATUS = ('pending', 'assigned', 'in_progress', 'completed', 'approved', 'blocked')
AGENT_ROLE = ('project_manager', 'research', 'architecture', 'ui_ux', 'frontend', 'backend', 'devops', 'qa')
AGENT_STATUS = ('idle', 'working', 'blocked')
APPROVAL_ENTITY_TYPE = ('proposal', 'task', 'deliverable')
APPROVAL_STATUS = ('approved', 'rejected', 'pending_revision')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(320), unique=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Agents first without current_task_id; the FK to tasks is added once tasks exists
    op.create_table(
        'agents',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.Enum(*AGENT_ROLE, name='agentrole'), nullable=False),
        sa.Column('specialization', sa.Text, nullable=False),
        sa.Column('status', sa.Enum(*AGENT_STATUS, name='agentstatus'), nullable=False, server_default='idle'),
        sa.Column('blocker_reason', sa.Text),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_agents_role', 'agents', ['role'])
    op.create_index('ix_agents_status', 'agents', ['status'])

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('status', sa.Enum(*PROJECT_STATUS, name='projectstatus'), nullable=False, server_default='ideation'),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('pm_agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('strategy_doc_url', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_attachments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_size', sa.Integer, nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('file_key', sa.Text, nullable=False),
        sa.Column('file_url', sa.Text, nullable=False),
        sa.Column('uploaded_by', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_project_attachments_project_id', 'project_attachments', ['project_id'])

    op.create_table(
        'proposals',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('proposal_type', sa.Enum(*PROPOSAL_TYPE, name='proposaltype'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content', sa.JSON, nullable=False),
        sa.Column('status', sa.Enum(*PROPOSAL_STATUS, name='proposalstatus'), nullable=False, server_default='pending_review'),
        sa.Column('created_by_agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('reviewed_by', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('reviewed_at', sa.DateTime),
        sa.Column('feedback', sa.Text),
        sa.Column('revises_proposal_id', sa.Integer, sa.ForeignKey('proposals.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_proposals_project_id', 'proposals', ['project_id'])
    op.create_index('ix_proposals_status', 'proposals', ['status'])
    op.create_index('ix_proposals_created_at', 'proposals', ['created_at'])

    # Second use of each enum type must not re-create it on PostgreSQL
    component_status = sa.Enum(*COMPONENT_STATUS, name='componentstatus')
    component_status_existing = postgresql.ENUM(*COMPONENT_STATUS, name='componentstatus', create_type=False)

    op.create_table(
        'subsystems',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('status', component_status, nullable=False, server_default='planned'),
        sa.Column('owner_agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_subsystems_project_id', 'subsystems', ['project_id'])

    op.create_table(
        'modules',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('subsystem_id', sa.Integer, sa.ForeignKey('subsystems.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('status', component_status_existing, nullable=False, server_default='planned'),
        sa.Column('owner_agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('design_doc_url', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_modules_subsystem_id', 'modules', ['subsystem_id'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('module_id', sa.Integer, sa.ForeignKey('modules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('requirements', sa.Text, nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUS, name='taskstatus'), nullable=False, server_default='pending'),
        sa.Column('assigned_agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('planned_role', postgresql.ENUM(*AGENT_ROLE, name='agentrole', create_type=False)),
        sa.Column('assignable', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('progress_percentage', sa.Integer, nullable=False, server_default='0'),
        sa.Column('blocker_reason', sa.Text),
        sa.Column('result', sa.Text),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('remote_task_id', sa.String(255)),
        sa.Column('remote_status', sa.String(32)),
        sa.Column('remote_synced_at', sa.DateTime),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            'progress_percentage >= 0 AND progress_percentage <= 100',
            name='valid_progress_percentage'
        ),
    )
    op.create_index('ix_tasks_module_id', 'tasks', ['module_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_assigned_agent_id', 'tasks', ['assigned_agent_id'])
    op.create_index('ix_tasks_remote_task_id', 'tasks', ['remote_task_id'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    with op.batch_alter_table('agents') as batch_op:
        batch_op.add_column(sa.Column('current_task_id', sa.Integer))
        batch_op.create_foreign_key(
            'fk_agents_current_task_id', 'tasks', ['current_task_id'], ['id'], ondelete='SET NULL'
        )

    op.create_table(
        'task_dependencies',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('depends_on_task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('task_id', 'depends_on_task_id', name='unique_task_dependency'),
        sa.CheckConstraint('task_id != depends_on_task_id', name='no_self_dependency'),
    )
    op.create_index('ix_task_dependencies_task_id', 'task_dependencies', ['task_id'])
    op.create_index('ix_task_dependencies_depends_on_task_id', 'task_dependencies', ['depends_on_task_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='SET NULL')),
        sa.Column('action', sa.String(255), nullable=False),
        sa.Column('details', sa.Text),
        sa.Column('tool_called', sa.String(255)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activity_logs_agent_id', 'activity_logs', ['agent_id'])
    op.create_index('ix_activity_logs_task_id', 'activity_logs', ['task_id'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])

    op.create_table(
        'approvals',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('entity_type', sa.Enum(*APPROVAL_ENTITY_TYPE, name='approvalentitytype'), nullable=False),
        sa.Column('entity_id', sa.Integer, nullable=False),
        sa.Column('status', sa.Enum(*APPROVAL_STATUS, name='approvalstatus'), nullable=False),
        sa.Column('comments', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_approvals_created_at', 'approvals', ['created_at'])

    op.create_table(
        'knowledge_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('value', sa.Text, nullable=False),
        sa.Column('source', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_knowledge_entries_project_id', 'knowledge_entries', ['project_id'])
    op.create_index('ix_knowledge_entries_key', 'knowledge_entries', ['key'])

    op.create_table(
        'deliverables',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.Integer, sa.ForeignKey('agents.id', ondelete='SET NULL')),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_deliverables_task_id', 'deliverables', ['task_id'])

    op.create_table(
        'execution_slot',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='SET NULL')),
        sa.Column('spec_id', sa.String(64)),
        sa.Column('promoted_by', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('promoted_at', sa.DateTime),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.CheckConstraint('id = 1', name='single_execution_slot'),
    )


def downgrade() -> None:
    op.drop_table('execution_slot')
    op.drop_table('deliverables')
    op.drop_table('knowledge_entries')
    op.drop_table('approvals')
    op.drop_table('activity_logs')
    op.drop_table('task_dependencies')
    with op.batch_alter_table('agents') as batch_op:
        batch_op.drop_constraint('fk_agents_current_task_id', type_='foreignkey')
        batch_op.drop_column('current_task_id')
    op.drop_table('tasks')
    op.drop_table('modules')
    op.drop_table('subsystems')
    op.drop_table('proposals')
    op.drop_table('project_attachments')
    op.drop_table('projects')
    op.drop_table('agents')
    op.drop_table('users')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name in (
            'projectstatus', 'proposaltype', 'proposalstatus', 'componentstatus', 'taskstatus',
            'agentrole', 'agentstatus', 'approvalentitytype', 'approvalstatus',
        ):
            op.execute(f'DROP TYPE IF EXISTS {name}')
