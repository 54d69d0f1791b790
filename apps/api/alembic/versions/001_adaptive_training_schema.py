"""adaptive training schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ZONES = "'recovery', 'endurance', 'tempo', 'sweet_spot', 'threshold', 'vo2max', 'anaerobic'"


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'ride',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('average_watts', sa.Float(), nullable=True),
        sa.Column('normalized_power', sa.Float(), nullable=True),
        sa.Column('tss', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_ride_user_recorded', 'ride', ['user_id', 'recorded_at'])

    op.create_table(
        'planned_workout',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('workout_date', sa.Date(), nullable=False),
        sa.Column('workout_type', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('target_zone', sa.Text(), nullable=True),
        sa.Column('workout_level', sa.Float(), nullable=True),
        sa.Column('target_tss', sa.Float(), nullable=True),
        sa.Column('target_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completion_percentage', sa.Float(), nullable=True),
        sa.Column('completed_ride_id', sa.Uuid(), sa.ForeignKey('ride.id', ondelete='SET NULL'), nullable=True),
        sa.Column('was_adapted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('adaptation_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"target_zone IS NULL OR target_zone IN ({ZONES})", name='ck_planned_workout_target_zone'),
        sa.CheckConstraint(
            "workout_level IS NULL OR (workout_level >= 1.0 AND workout_level <= 10.0)",
            name='ck_planned_workout_level_range',
        ),
    )
    op.create_index('ix_planned_workout_user_date', 'planned_workout', ['user_id', 'workout_date'])

    op.create_table(
        'workout_feedback',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('planned_workout_id', sa.Uuid(), sa.ForeignKey('planned_workout.id', ondelete='CASCADE'), nullable=False),
        sa.Column('perceived_exertion', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('planned_workout_id', name='uq_workout_feedback_workout'),
        sa.CheckConstraint(
            "perceived_exertion IS NULL OR (perceived_exertion >= 1 AND perceived_exertion <= 10)",
            name='ck_workout_feedback_rpe_range',
        ),
    )

    op.create_table(
        'ftp_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('ftp_watts', sa.Integer(), nullable=False),
        sa.Column('lthr_bpm', sa.Integer(), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('test_type', sa.Text(), nullable=True),
        sa.Column('ride_id', sa.Uuid(), sa.ForeignKey('ride.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("ftp_watts > 0", name='ck_ftp_history_watts_positive'),
        sa.CheckConstraint("lthr_bpm IS NULL OR (lthr_bpm > 0 AND lthr_bpm < 220)", name='ck_ftp_history_lthr_range'),
    )
    op.create_index('ix_ftp_history_user_effective', 'ftp_history', ['user_id', 'effective_date'])

    op.create_table(
        'ride_classification',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ride_id', sa.Uuid(), sa.ForeignKey('ride.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('zone', sa.Text(), nullable=False),
        sa.Column('estimated_rpe', sa.Float(), nullable=True),
        sa.Column('intensity_factor', sa.Float(), nullable=True),
        sa.Column('used_ftp', sa.Integer(), nullable=True),
        sa.Column('classification_method', sa.Text(), nullable=False, server_default='power'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.85'),
        sa.Column('classified_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('ride_id', name='uq_ride_classification_ride'),
        sa.CheckConstraint(f"zone IN ({ZONES})", name='ck_ride_classification_zone'),
    )
    op.create_index('ix_ride_classification_user_zone', 'ride_classification', ['user_id', 'zone'])

    op.create_table(
        'progression_level',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('zone', sa.Text(), nullable=False),
        sa.Column('level', sa.Float(), nullable=False, server_default='3.0'),
        sa.Column('workouts_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_workout_date', sa.Date(), nullable=True),
        sa.Column('last_level_change', sa.Float(), nullable=True),
        sa.Column('last_level_change_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'zone', name='uq_progression_level_user_zone'),
        sa.CheckConstraint(f"zone IN ({ZONES})", name='ck_progression_level_zone'),
        sa.CheckConstraint("level >= 1.0 AND level <= 10.0", name='ck_progression_level_range'),
    )

    op.create_table(
        'progression_level_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('zone', sa.Text(), nullable=False),
        sa.Column('old_level', sa.Float(), nullable=True),
        sa.Column('new_level', sa.Float(), nullable=False),
        sa.Column('level_change', sa.Float(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('ride_id', sa.Uuid(), sa.ForeignKey('ride.id', ondelete='SET NULL'), nullable=True),
        sa.Column('planned_workout_id', sa.Uuid(), sa.ForeignKey('planned_workout.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_progression_history_user_zone_created',
        'progression_level_history',
        ['user_id', 'zone', 'created_at'],
    )

    op.create_table(
        'adaptation_settings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('adaptive_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_apply', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('adaptation_sensitivity', sa.Text(), nullable=False, server_default='moderate'),
        sa.Column('min_days_before_workout', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('tsb_fatigued_threshold', sa.Float(), nullable=False, server_default='-30.0'),
        sa.Column('tsb_fresh_threshold', sa.Float(), nullable=False, server_default='5.0'),
        sa.Column('notify_on_adaptation', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "adaptation_sensitivity IN ('conservative', 'moderate', 'aggressive')",
            name='ck_adaptation_settings_sensitivity',
        ),
        sa.CheckConstraint("min_days_before_workout >= 0", name='ck_adaptation_settings_min_days'),
    )

    op.create_table(
        'adaptation_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('planned_workout_id', sa.Uuid(), sa.ForeignKey('planned_workout.id', ondelete='SET NULL'), nullable=True),
        sa.Column('old_workout_level', sa.Float(), nullable=True),
        sa.Column('new_workout_level', sa.Float(), nullable=True),
        sa.Column('level_change', sa.Float(), nullable=True),
        sa.Column('adaptation_type', sa.Text(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('tsb_value', sa.Float(), nullable=True),
        sa.Column('recent_completion_rate', sa.Float(), nullable=True),
        sa.Column('zone_progression_level', sa.Float(), nullable=True),
        sa.Column('recent_avg_rpe', sa.Float(), nullable=True),
        sa.Column('was_accepted', sa.Boolean(), nullable=True),
        sa.Column('user_feedback', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "adaptation_type IN ('increase', 'decrease', 'substitute', 'skip', 'reschedule', 'no_change')",
            name='ck_adaptation_history_type',
        ),
    )
    op.create_index('ix_adaptation_history_user_created', 'adaptation_history', ['user_id', 'created_at'])
    op.create_index('ix_adaptation_history_workout', 'adaptation_history', ['planned_workout_id'])


def downgrade() -> None:
    op.drop_index('ix_adaptation_history_workout', table_name='adaptation_history')
    op.drop_index('ix_adaptation_history_user_created', table_name='adaptation_history')
    op.drop_table('adaptation_history')
    op.drop_table('adaptation_settings')
    op.drop_index('ix_progression_history_user_zone_created', table_name='progression_level_history')
    op.drop_table('progression_level_history')
    op.drop_table('progression_level')
    op.drop_index('ix_ride_classification_user_zone', table_name='ride_classification')
    op.drop_table('ride_classification')
    op.drop_index('ix_ftp_history_user_effective', table_name='ftp_history')
    op.drop_table('ftp_history')
    op.drop_table('workout_feedback')
    op.drop_index('ix_planned_workout_user_date', table_name='planned_workout')
    op.drop_table('planned_workout')
    op.drop_index('ix_ride_user_recorded', table_name='ride')
    op.drop_table('ride')
