"""
Academic session routes.

The active session is read together with the school's state version, which
is also sent as the ETag. Clients pass it back as ``If-Match`` (or
``expectedVersion``) when activating so a stale screen cannot overwrite a
newer activation.
"""

from flask import Blueprint, jsonify, request

from promotion_engine.errors import ValidationError
from promotion_engine.extensions import limiter
from promotion_engine.forms import ActivateSessionForm, SessionForm
from promotion_engine.routes import require_school_id, validated_form
from promotion_engine.services import history_ledger, session_store
from promotion_engine.utils.helpers import coerce_int

sessions_bp = Blueprint('sessions', __name__, url_prefix='/api/sessions')


def _version_from_if_match():
    raw = request.headers.get('If-Match')
    if not raw:
        return None
    tag = raw.strip()
    if tag.startswith('W/'):
        tag = tag[2:]
    version = coerce_int(tag.strip('"'))
    if version is None:
        raise ValidationError("If-Match must carry the version ETag from GET /api/sessions/active.")
    return version


@sessions_bp.route('', methods=['POST'])
@limiter.limit("30 per minute")
def create_session():
    form = validated_form(SessionForm)
    session_obj = session_store.create_session(
        form.schoolId.data.strip(),
        form.year.data,
        start_date=form.startDate.data,
        end_date=form.endDate.data,
    )
    return jsonify(session_obj.to_dict()), 201


@sessions_bp.route('', methods=['GET'])
def list_sessions():
    school_id = require_school_id()
    sessions = session_store.list_sessions(school_id)
    return jsonify(sessions=[s.to_dict() for s in sessions])


@sessions_bp.route('/active', methods=['GET'])
def get_active_session():
    """
    Return the active session with the version to send back on activation.

    Unlike session_store.get_active_session this answers 200 with a null
    session when nothing is active yet, since the version is still needed
    for the first activation.
    """
    school_id = require_school_id()
    active = session_store.find_active_session(school_id)
    version = session_store.current_version(school_id)
    response = jsonify(session=active.to_dict() if active else None, version=version)
    response.headers['ETag'] = f'"{version}"'
    return response


@sessions_bp.route('/<int:session_id>/next', methods=['GET'])
def get_next_session(session_id):
    school_id = require_school_id()
    following = session_store.next_session(school_id, session_id)
    return jsonify(session=following.to_dict())


@sessions_bp.route('/<int:session_id>', methods=['PATCH'])
@limiter.limit("30 per minute")
def activate_session(session_id):
    form = validated_form(ActivateSessionForm)
    header_version = _version_from_if_match()
    body_version = form.expectedVersion.data
    if header_version is not None and body_version is not None and header_version != body_version:
        raise ValidationError("If-Match and expectedVersion disagree.")
    expected = header_version if header_version is not None else body_version

    session_obj, state, changed = session_store.activate_session(
        form.schoolId.data.strip(), session_id, expected_version=expected
    )
    response = jsonify(session=session_obj.to_dict(), version=state.version, changed=changed)
    response.headers['ETag'] = state.etag()
    return response


@sessions_bp.route('/activations', methods=['GET'])
def list_activations():
    school_id = require_school_id()
    entries = history_ledger.activations_for_school(school_id)
    return jsonify(activations=[e.to_dict() for e in entries])
