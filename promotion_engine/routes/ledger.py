"""
Read-only history ledger routes (``/api/studentsessions``).
"""

import pytz
from flask import Blueprint, jsonify, request

from promotion_engine.errors import ValidationError
from promotion_engine.routes import optional_int_arg
from promotion_engine.services import history_ledger
from promotion_engine.utils.constants import TRANSITION_STATUSES
from promotion_engine.utils.helpers import format_local

ledger_bp = Blueprint('ledger', __name__, url_prefix='/api/studentsessions')


def _requested_timezone():
    tz_name = (request.args.get('tz') or '').strip()
    if not tz_name:
        return None
    try:
        pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone '{tz_name}'.", details={'field': 'tz'})
    return tz_name


def _serialize(record, tz_name, student_name=None):
    entry = record.to_dict()
    if student_name is not None:
        entry['studentName'] = student_name
    if tz_name:
        entry['createdAtLocal'] = format_local(record.created_at, tz_name)
    return entry


@ledger_bp.route('/by-school/<school_id>')
def by_school(school_id):
    """Ledger for a school, newest first, optionally filtered by session and status."""
    tz_name = _requested_timezone()
    status = request.args.get('status')
    if status and status not in TRANSITION_STATUSES:
        raise ValidationError(f"Unknown status '{status}'.", details={'field': 'status'})

    rows = history_ledger.query_by_school(
        school_id, session_id=optional_int_arg('sessionId'), status=status
    )
    return jsonify(studentSessions=[
        _serialize(record, tz_name, student_name or '') for record, student_name in rows
    ])


@ledger_bp.route('/by-student/<student_id>')
def by_student(student_id):
    tz_name = _requested_timezone()
    records = history_ledger.query_by_student(student_id)
    return jsonify(studentSessions=[_serialize(r, tz_name) for r in records])
