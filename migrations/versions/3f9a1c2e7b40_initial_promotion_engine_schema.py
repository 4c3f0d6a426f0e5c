"""Initial promotion engine schema

Revision ID: 3f9a1c2e7b40
Revises:
Create Date: 2026-10-19

Creates sessions, the per-school active-session pointer, the class catalog,
student enrollments and the two append-only ledgers.

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9a1c2e7b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'academic_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('year', sa.String(length=20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('school_id', 'year', name='uq_academic_sessions_school_year'),
    )
    op.create_index('ix_academic_sessions_school_id', 'academic_sessions', ['school_id'])
    # At most one active session per school
    op.create_index(
        'uq_academic_sessions_one_active',
        'academic_sessions',
        ['school_id'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'school_session_states',
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('active_session_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['active_session_id'], ['academic_sessions.id']),
        sa.PrimaryKeyConstraint('school_id'),
    )

    op.create_table(
        'class_definitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('school_id', 'ordinal', name='uq_class_definitions_school_ordinal'),
        sa.UniqueConstraint('school_id', 'name', name='uq_class_definitions_school_name'),
    )

    op.create_table(
        'student_enrollments',
        sa.Column('student_id', sa.String(length=64), nullable=False),
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('current_class_id', sa.Integer(), nullable=False),
        sa.Column('section_class', sa.String(length=10), nullable=False, server_default='A'),
        sa.Column('student_name', sa.String(length=120), nullable=True),
        sa.Column('admission_number', sa.String(length=40), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_dropped', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_graduated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_transfer_cert_issued', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['academic_sessions.id']),
        sa.ForeignKeyConstraint(['current_class_id'], ['class_definitions.id']),
        sa.PrimaryKeyConstraint('student_id'),
    )
    op.create_index(
        'ix_student_enrollments_school_session', 'student_enrollments', ['school_id', 'session_id']
    )

    op.create_table(
        'transition_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('student_id', sa.String(length=64), nullable=False),
        sa.Column('from_session_id', sa.Integer(), nullable=False),
        sa.Column('to_session_id', sa.Integer(), nullable=False),
        sa.Column('from_class_id', sa.Integer(), nullable=False),
        sa.Column('to_class_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['from_session_id'], ['academic_sessions.id']),
        sa.ForeignKeyConstraint(['to_session_id'], ['academic_sessions.id']),
        sa.ForeignKeyConstraint(['from_class_id'], ['class_definitions.id']),
        sa.ForeignKeyConstraint(['to_class_id'], ['class_definitions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'to_session_id', name='uq_transition_records_student_to_session'),
    )
    op.create_index('ix_transition_records_school_id', 'transition_records', ['school_id'])
    op.create_index('ix_transition_records_from_session', 'transition_records', ['from_session_id'])

    op.create_table(
        'session_activations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.String(length=64), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('previous_session_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['academic_sessions.id']),
        sa.ForeignKeyConstraint(['previous_session_id'], ['academic_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_session_activations_school_id', 'session_activations', ['school_id'])


def downgrade():
    op.drop_index('ix_session_activations_school_id', table_name='session_activations')
    op.drop_table('session_activations')
    op.drop_index('ix_transition_records_from_session', table_name='transition_records')
    op.drop_index('ix_transition_records_school_id', table_name='transition_records')
    op.drop_table('transition_records')
    op.drop_index('ix_student_enrollments_school_session', table_name='student_enrollments')
    op.drop_table('student_enrollments')
    op.drop_table('class_definitions')
    op.drop_table('school_session_states')
    op.drop_index('uq_academic_sessions_one_active', table_name='academic_sessions')
    op.drop_index('ix_academic_sessions_school_id', table_name='academic_sessions')
    op.drop_table('academic_sessions')
