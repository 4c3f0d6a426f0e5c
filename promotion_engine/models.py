"""
Database models for the promotion engine.

All SQLAlchemy models are defined here with their constraints.
Times are stored as UTC in the database.
"""

from datetime import datetime, timezone

from sqlalchemy import event, text

from promotion_engine.extensions import db
from promotion_engine.errors import LedgerImmutableError
from promotion_engine.utils.constants import DEFAULT_SECTION
from promotion_engine.utils.helpers import format_utc_iso


def _utc_now():
    """Helper function for timezone-aware datetime defaults in SQLAlchemy models."""
    return datetime.now(timezone.utc)


def _date_iso(value):
    return value.isoformat() if value else None


# -------------------- SESSIONS --------------------

class AcademicSession(db.Model):
    """
    One academic year for a school (e.g. "2025-26").

    At most one session per school is active. The flag is only changed by
    the session store's activation transaction, which also moves the
    school's SchoolSessionState row; the partial unique index below is the
    database-level backstop for the same invariant.
    """
    __tablename__ = 'academic_sessions'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.String(64), nullable=False)
    year = db.Column(db.String(20), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utc_now)

    __table_args__ = (
        db.UniqueConstraint('school_id', 'year', name='uq_academic_sessions_school_year'),
        db.Index('ix_academic_sessions_school_id', 'school_id'),
        db.Index(
            'uq_academic_sessions_one_active',
            'school_id',
            unique=True,
            sqlite_where=text('is_active = 1'),
            postgresql_where=text('is_active'),
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'year': self.year,
            'startDate': _date_iso(self.start_date),
            'endDate': _date_iso(self.end_date),
            'isActive': bool(self.is_active),
            'createdAt': format_utc_iso(self.created_at),
        }

    def __repr__(self):
        flag = " active" if self.is_active else ""
        return f'<AcademicSession {self.school_id}/{self.year}{flag}>'


class SchoolSessionState(db.Model):
    """
    Authoritative active-session pointer for a school.

    ``version`` is bumped by SQLAlchemy on every update and checked in the
    UPDATE's WHERE clause, so two activations racing on the same school
    cannot both commit.
    """
    __tablename__ = 'school_session_states'

    school_id = db.Column(db.String(64), primary_key=True)
    active_session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=True)
    version = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utc_now, onupdate=_utc_now)

    active_session = db.relationship('AcademicSession')

    __mapper_args__ = {'version_id_col': version}

    def etag(self):
        return f'"{self.version}"'

    def __repr__(self):
        return f'<SchoolSessionState {self.school_id} active={self.active_session_id} v{self.version}>'


# -------------------- CLASS CATALOG --------------------

class ClassDefinition(db.Model):
    """A class in promotion order; ``ordinal`` is its persisted rank."""
    __tablename__ = 'class_definitions'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(50), nullable=False)
    ordinal = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('school_id', 'ordinal', name='uq_class_definitions_school_ordinal'),
        db.UniqueConstraint('school_id', 'name', name='uq_class_definitions_school_name'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'name': self.name,
            'ordinal': self.ordinal,
        }

    def __repr__(self):
        return f'<ClassDefinition {self.school_id}/{self.name} #{self.ordinal}>'


# -------------------- STUDENT DIRECTORY --------------------

class StudentEnrollment(db.Model):
    """
    The slice of a student record the engine reads and writes.

    Owned by the student directory; the engine only moves the class and
    session pointers and the active/dropped/graduated flags.
    """
    __tablename__ = 'student_enrollments'

    student_id = db.Column(db.String(64), primary_key=True)
    school_id = db.Column(db.String(64), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=True)
    current_class_id = db.Column(db.Integer, db.ForeignKey('class_definitions.id'), nullable=False)
    section_class = db.Column(db.String(10), nullable=False, default=DEFAULT_SECTION)
    student_name = db.Column(db.String(120), nullable=True)
    admission_number = db.Column(db.String(40), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_dropped = db.Column(db.Boolean, nullable=False, default=False)
    is_graduated = db.Column(db.Boolean, nullable=False, default=False)
    is_transfer_cert_issued = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(db.DateTime, default=_utc_now, onupdate=_utc_now)

    current_class = db.relationship('ClassDefinition')

    __table_args__ = (
        db.Index('ix_student_enrollments_school_session', 'school_id', 'session_id'),
    )

    def to_dict(self):
        return {
            'studentId': self.student_id,
            'schoolId': self.school_id,
            'sessionId': self.session_id,
            'currentClassId': self.current_class_id,
            'className': self.current_class.name if self.current_class else None,
            'sectionClass': self.section_class,
            'studentName': self.student_name,
            'admissionNumber': self.admission_number,
            'isActive': bool(self.is_active),
            'isDropped': bool(self.is_dropped),
            'isGraduated': bool(self.is_graduated),
            'isTransferCertIssued': bool(self.is_transfer_cert_issued),
        }

    def __repr__(self):
        return f'<StudentEnrollment {self.student_id} class={self.current_class_id} session={self.session_id}>'


# -------------------- HISTORY LEDGER --------------------

class TransitionRecord(db.Model):
    """
    Immutable record of one student's promotion, drop or graduation.

    ``(student_id, to_session_id)`` is the idempotence key: a student can be
    transitioned into a given session exactly once.
    """
    __tablename__ = 'transition_records'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.String(64), nullable=False)
    student_id = db.Column(db.String(64), nullable=False)
    from_session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=False)
    to_session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=False)
    from_class_id = db.Column(db.Integer, db.ForeignKey('class_definitions.id'), nullable=False)
    to_class_id = db.Column(db.Integer, db.ForeignKey('class_definitions.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)

    from_session = db.relationship('AcademicSession', foreign_keys=[from_session_id])
    to_session = db.relationship('AcademicSession', foreign_keys=[to_session_id])
    from_class = db.relationship('ClassDefinition', foreign_keys=[from_class_id])
    to_class = db.relationship('ClassDefinition', foreign_keys=[to_class_id])

    __table_args__ = (
        db.UniqueConstraint('student_id', 'to_session_id', name='uq_transition_records_student_to_session'),
        db.Index('ix_transition_records_school_id', 'school_id'),
        db.Index('ix_transition_records_from_session', 'from_session_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'studentId': self.student_id,
            'fromSessionId': self.from_session_id,
            'toSessionId': self.to_session_id,
            'fromClassId': self.from_class_id,
            'toClassId': self.to_class_id,
            'fromClassName': self.from_class.name if self.from_class else None,
            'toClassName': self.to_class.name if self.to_class else None,
            'status': self.status,
            'remarks': self.remarks,
            'createdAt': format_utc_iso(self.created_at),
        }

    def __repr__(self):
        return f'<TransitionRecord {self.student_id} {self.status} -> session {self.to_session_id}>'


class SessionActivation(db.Model):
    """Append-only log of session activations per school."""
    __tablename__ = 'session_activations'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.String(64), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=False)
    previous_session_id = db.Column(db.Integer, db.ForeignKey('academic_sessions.id'), nullable=True)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)

    __table_args__ = (
        db.Index('ix_session_activations_school_id', 'school_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'sessionId': self.session_id,
            'previousSessionId': self.previous_session_id,
            'version': self.version,
            'createdAt': format_utc_iso(self.created_at),
        }

    def __repr__(self):
        return f'<SessionActivation {self.school_id}: {self.previous_session_id} -> {self.session_id}>'


def _refuse_ledger_mutation(mapper, connection, target):
    raise LedgerImmutableError(
        f"{type(target).__name__} rows are append-only",
        details={'id': getattr(target, 'id', None)},
    )


for _ledger_model in (TransitionRecord, SessionActivation):
    event.listen(_ledger_model, 'before_update', _refuse_ledger_mutation)
    event.listen(_ledger_model, 'before_delete', _refuse_ledger_mutation)
