"""
Session store: academic sessions per school.

Invariant: at most one session per school has ``is_active = True``.
Activation is the only operation that touches the flag. It runs as one
transaction that moves the school's SchoolSessionState pointer (a
version-checked UPDATE), clears the flag on every other session of the
school, sets it on the target and logs the activation.
"""

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from promotion_engine.errors import ConflictError, NotFoundError, ValidationError
from promotion_engine.extensions import db
from promotion_engine.models import AcademicSession, SchoolSessionState
from promotion_engine.services import history_ledger
from promotion_engine.utils.helpers import parse_iso_date

MAX_YEAR_LABEL_LENGTH = 20


def order_sessions(sessions):
    """
    Sort sessions into temporal order.

    By start date when every session has one; otherwise the year labels are
    compared lexically ("2024-25" < "2025-26"). Ties fall back to id.
    """
    sessions = list(sessions)
    if sessions and all(s.start_date for s in sessions):
        return sorted(sessions, key=lambda s: (s.start_date, s.year, s.id))
    return sorted(sessions, key=lambda s: (s.year, s.id))


def list_sessions(school_id):
    return order_sessions(AcademicSession.query.filter_by(school_id=school_id).all())


def get_session(school_id, session_id):
    session_obj = AcademicSession.query.filter_by(school_id=school_id, id=session_id).first()
    if not session_obj:
        raise NotFoundError(f"Session {session_id} not found for school {school_id}.")
    return session_obj


def find_active_session(school_id):
    """Return the active session or None."""
    return AcademicSession.query.filter_by(school_id=school_id, is_active=True).first()


def get_active_session(school_id):
    active = find_active_session(school_id)
    if not active:
        raise NotFoundError(f"No active session for school {school_id}.")
    return active


def get_session_state(school_id):
    """Return the school's SchoolSessionState row, or None before the first activation."""
    return db.session.get(SchoolSessionState, school_id)


def current_version(school_id):
    state = get_session_state(school_id)
    return state.version if state else 0


def create_session(school_id, year, start_date=None, end_date=None):
    """Create an inactive session. Raises ValidationError on bad input."""
    year = (year or '').strip()
    if not year:
        raise ValidationError("Session year is required.", details={'field': 'year'})
    if len(year) > MAX_YEAR_LABEL_LENGTH:
        raise ValidationError(
            f"Session year must be at most {MAX_YEAR_LABEL_LENGTH} characters.",
            details={'field': 'year'},
        )

    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise ValidationError("Dates must use the YYYY-MM-DD format.")

    if start and end and start > end:
        raise ValidationError(
            "Session start date must not be after its end date.",
            details={'startDate': start.isoformat(), 'endDate': end.isoformat()},
        )

    if AcademicSession.query.filter_by(school_id=school_id, year=year).first():
        raise ValidationError(f"Session {year} already exists for this school.", details={'field': 'year'})

    session_obj = AcademicSession(
        school_id=school_id,
        year=year,
        start_date=start,
        end_date=end,
        is_active=False,
    )
    db.session.add(session_obj)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Session {year} already exists for this school.", details={'field': 'year'})

    current_app.logger.info(f"Created session {year} (id={session_obj.id}) for school {school_id}")
    return session_obj


def activate_session(school_id, session_id, expected_version=None):
    """
    Make ``session_id`` the school's only active session.

    Returns ``(session, state, changed)``. Activating the already-active
    session is a no-op success with ``changed=False``.

    Raises:
        NotFoundError: unknown session for this school.
        ConflictError: ``expected_version`` is stale, or another activation
            for the same school committed first. Nothing is written.
    """
    target = get_session(school_id, session_id)
    state = get_session_state(school_id)
    version_now = state.version if state else 0

    if expected_version is not None and expected_version != version_now:
        raise ConflictError(
            "Active session changed since it was read; reload and retry.",
            details={'expectedVersion': expected_version, 'currentVersion': version_now},
        )

    if state and state.active_session_id == target.id and target.is_active:
        return target, state, False

    previous_session_id = state.active_session_id if state else None

    try:
        if state is None:
            state = SchoolSessionState(school_id=school_id, active_session_id=target.id)
            db.session.add(state)
        else:
            state.active_session_id = target.id
        # Version-checked write first; a stale row fails here before any flag moves
        db.session.flush()

        AcademicSession.query.filter(
            AcademicSession.school_id == school_id,
            AcademicSession.is_active.is_(True),
            AcademicSession.id != target.id,
        ).update({AcademicSession.is_active: False}, synchronize_session='fetch')

        target.is_active = True
        db.session.flush()

        history_ledger.record_activation(
            school_id=school_id,
            session_id=target.id,
            previous_session_id=previous_session_id,
            version=state.version,
        )
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        current_app.logger.warning(
            f"Concurrent activation for school {school_id} lost the race: {exc}"
        )
        raise ConflictError(
            "Another activation for this school completed first; reload and retry.",
            details={'sessionId': session_id},
        )

    current_app.logger.info(
        f"Activated session {target.year} (id={target.id}) for school {school_id}, "
        f"previous={previous_session_id}, version={state.version}"
    )
    return target, state, True


def next_session(school_id, current_session_id):
    """
    Return the session immediately after ``current_session_id``.

    Raises NotFoundError if the session is unknown or is the most recent one.
    """
    ordered = list_sessions(school_id)
    for index, session_obj in enumerate(ordered):
        if session_obj.id == current_session_id:
            if index + 1 < len(ordered):
                return ordered[index + 1]
            raise NotFoundError(
                f"No session after {session_obj.year}; create the next session first."
            )
    raise NotFoundError(f"Session {current_session_id} not found for school {school_id}.")
