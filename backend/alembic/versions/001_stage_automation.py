"""Stage automation schema: settings, chain, orders, tasks, notifications

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'automation_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stage_id', sa.String(50), nullable=False),
        sa.Column('stage_name', sa.String(100), nullable=False),
        sa.Column('task_name', sa.String(200), nullable=False),
        sa.Column('task_order_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('responsible_user_id', sa.String(64), nullable=True),
        sa.Column('dispatcher_id', sa.String(64), nullable=True),
        sa.Column('dispatcher_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('task_title_template', sa.String(255), nullable=False, server_default=''),
        sa.Column('task_description_template', sa.Text(), nullable=False, server_default=''),
        sa.Column('payment_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_days', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('start_condition', sa.String(20), nullable=False, server_default='immediate'),
        sa.Column('depends_on_task_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['depends_on_task_id'], ['automation_settings.id'], ondelete='SET NULL'),
        sa.CheckConstraint('dispatcher_percentage BETWEEN 0 AND 100', name='ck_automation_settings_dispatcher_pct'),
        sa.CheckConstraint('payment_amount >= 0', name='ck_automation_settings_payment'),
        sa.CheckConstraint('duration_days >= 1', name='ck_automation_settings_duration'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_automation_settings_id', 'automation_settings', ['id'])
    op.create_index('ix_automation_settings_stage', 'automation_settings', ['stage_id', 'task_order_position'])
    op.create_index('ix_automation_settings_depends_on', 'automation_settings', ['depends_on_task_id'])

    op.create_table(
        'stage_automation_chain',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_stage_id', sa.String(50), nullable=False),
        sa.Column('to_stage_id', sa.String(50), nullable=True),
        sa.Column('order_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stage_automation_chain_id', 'stage_automation_chain', ['id'])
    op.create_index('ix_stage_chain_from_stage', 'stage_automation_chain', ['from_stage_id'])

    op.create_table(
        'zakazi',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False, server_default=''),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_zakazi_id', 'zakazi', ['id'])

    op.create_table(
        'zadachi',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('responsible_user_id', sa.String(64), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('stage_id', sa.String(50), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('original_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('priority', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(20), nullable=False, server_default='in_progress'),
        sa.Column('salary', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dispatcher_id', sa.String(64), nullable=True),
        sa.Column('dispatcher_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('automation_setting_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.String(64), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['zakazi.id'], ),
        sa.ForeignKeyConstraint(['automation_setting_id'], ['automation_settings.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('order_id', 'automation_setting_id', name='uq_zadachi_order_setting'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_zadachi_order_stage', 'zadachi', ['order_id', 'stage_id'])
    op.create_index('ix_zadachi_responsible', 'zadachi', ['responsible_user_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('url', sa.String(500), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])

    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('endpoint', sa.String(1000), nullable=False),
        sa.Column('p256dh', sa.String(255), nullable=True),
        sa.Column('auth', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.UniqueConstraint('endpoint'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_push_subscriptions_id', 'push_subscriptions', ['id'])
    op.create_index('ix_push_subscriptions_user_id', 'push_subscriptions', ['user_id'])


def downgrade() -> None:
    op.drop_table('push_subscriptions')
    op.drop_table('notifications')
    op.drop_table('zadachi')
    op.drop_table('zakazi')
    op.drop_table('stage_automation_chain')
    op.drop_table('automation_settings')
