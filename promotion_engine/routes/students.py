"""
Student routes: roster, promotion/drop batches and the drop box.

Batch endpoints answer with the per-student outcome. The HTTP status tells
the caller what to do next: 200 done, 207 retry the listed students,
502 fix the rejection, 504 retry everything (safe, the ledger key dedups).
"""

from flask import Blueprint, jsonify

from promotion_engine.extensions import limiter
from promotion_engine.forms import RevokeDropForm, TransitionBatchForm
from promotion_engine.routes import (
    json_payload,
    optional_bool_arg,
    optional_int_arg,
    require_school_id,
    validated_form,
)
from promotion_engine.services import class_catalog
from promotion_engine.services.promotion import build_requests, execute_transitions
from promotion_engine.services.student_directory import get_directory
from promotion_engine.utils.constants import STATUS_DROP_OUT, STATUS_PROMOTED

students_bp = Blueprint('students', __name__, url_prefix='/api/students')


def _with_class_names(school_id, snapshots):
    names = {c.id: c.name for c in class_catalog.list_classes(school_id)}
    result = []
    for snapshot in snapshots:
        entry = snapshot.to_dict()
        entry['className'] = names.get(snapshot.current_class_id)
        result.append(entry)
    return result


def _run_batch(list_key, decision=None):
    payload = json_payload()
    form = validated_form(TransitionBatchForm, payload)
    requests = build_requests(payload.get(list_key), decision=decision)
    outcome = execute_transitions(
        form.schoolId.data.strip(),
        form.fromSessionId.data,
        form.toSessionId.data,
        requests,
        timeout=form.timeout.data,
    )
    return jsonify(outcome.to_dict()), outcome.http_status


@students_bp.route('', methods=['GET'])
def list_students():
    """Roster for the promotion screen, filtered by session and class."""
    school_id = require_school_id()
    students = get_directory().list_students(
        school_id,
        session_id=optional_int_arg('sessionId'),
        class_id=optional_int_arg('classId'),
        include_inactive=optional_bool_arg('includeInactive'),
    )
    return jsonify(students=_with_class_names(school_id, students))


@students_bp.route('/promote', methods=['POST'])
@limiter.limit("20 per minute")
def promote_students():
    return _run_batch('promotions', decision=STATUS_PROMOTED)


@students_bp.route('/drop', methods=['POST'])
@limiter.limit("20 per minute")
def drop_students():
    return _run_batch('drops', decision=STATUS_DROP_OUT)


@students_bp.route('/transition', methods=['POST'])
@limiter.limit("20 per minute")
def transition_students():
    """Mixed batch: each decision carries its own status."""
    return _run_batch('decisions')


@students_bp.route('/dropped', methods=['GET'])
def list_dropped_students():
    school_id = require_school_id()
    dropped = get_directory().list_dropped(school_id)
    return jsonify(students=_with_class_names(school_id, dropped))


@students_bp.route('/<student_id>/revoke', methods=['PATCH'])
@limiter.limit("30 per minute")
def revoke_drop(student_id):
    """Bring a dropped student back; the ledger keeps the DropOut row."""
    form = validated_form(RevokeDropForm)
    school_id = form.schoolId.data.strip()
    snapshot = get_directory().revoke_drop(school_id, student_id)
    return jsonify(status='success', student=_with_class_names(school_id, [snapshot])[0])
