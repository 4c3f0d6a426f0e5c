"""
History ledger: append-only transition records and session activations.

Rows are never updated or deleted (the models refuse both). The
``(student_id, to_session_id)`` unique key makes appends idempotent: the
second append for the same key raises DuplicateError, which callers treat as
"already done".
"""

from sqlalchemy import or_

from promotion_engine.errors import DuplicateError, ValidationError
from promotion_engine.extensions import db
from promotion_engine.models import SessionActivation, StudentEnrollment, TransitionRecord
from promotion_engine.utils.constants import TRANSITION_STATUSES


def find_record(student_id, to_session_id):
    return TransitionRecord.query.filter_by(
        student_id=student_id, to_session_id=to_session_id
    ).first()


def existing_keys(student_ids, to_session_id):
    """Return the subset of ``student_ids`` that already have a record for ``to_session_id``."""
    if not student_ids:
        return {}
    rows = TransitionRecord.query.filter(
        TransitionRecord.to_session_id == to_session_id,
        TransitionRecord.student_id.in_(list(student_ids)),
    ).all()
    return {row.student_id: row for row in rows}


def append(record):
    """
    Add ``record`` to the ledger inside the current transaction.

    The caller commits. Raises DuplicateError if the key is already taken,
    either by a committed row or by one pending in this transaction.
    """
    if record.status not in TRANSITION_STATUSES:
        raise ValidationError(f"Unknown transition status '{record.status}'.")

    if find_record(record.student_id, record.to_session_id):
        raise DuplicateError(
            f"Student {record.student_id} already has a transition into session {record.to_session_id}.",
            details={'studentId': record.student_id, 'toSessionId': record.to_session_id},
        )

    db.session.add(record)
    db.session.flush()
    return record


def query_by_school(school_id, session_id=None, status=None):
    """
    Return ``[(record, student_name)]`` for a school, newest first.

    Name search is left to the client; the join only supplies the name.
    """
    query = (
        db.session.query(TransitionRecord, StudentEnrollment.student_name)
        .outerjoin(StudentEnrollment, StudentEnrollment.student_id == TransitionRecord.student_id)
        .filter(TransitionRecord.school_id == school_id)
    )
    if session_id is not None:
        query = query.filter(or_(
            TransitionRecord.from_session_id == session_id,
            TransitionRecord.to_session_id == session_id,
        ))
    if status:
        query = query.filter(TransitionRecord.status == status)
    return query.order_by(TransitionRecord.created_at.desc(), TransitionRecord.id.desc()).all()


def query_by_student(student_id):
    return (
        TransitionRecord.query
        .filter_by(student_id=student_id)
        .order_by(TransitionRecord.created_at.asc(), TransitionRecord.id.asc())
        .all()
    )


def query_by_session(session_id):
    return (
        TransitionRecord.query
        .filter(or_(
            TransitionRecord.from_session_id == session_id,
            TransitionRecord.to_session_id == session_id,
        ))
        .order_by(TransitionRecord.id.asc())
        .all()
    )


def record_activation(school_id, session_id, previous_session_id, version):
    """Log an activation inside the caller's transaction."""
    entry = SessionActivation(
        school_id=school_id,
        session_id=session_id,
        previous_session_id=previous_session_id,
        version=version,
    )
    db.session.add(entry)
    return entry


def activations_for_school(school_id):
    return (
        SessionActivation.query
        .filter_by(school_id=school_id)
        .order_by(SessionActivation.id.desc())
        .all()
    )
