"""
Blueprints for the promotion engine API.

Shared request helpers live here; each module registers one blueprint.
"""

from flask import request
from werkzeug.datastructures import ImmutableMultiDict

from promotion_engine.errors import ValidationError
from promotion_engine.utils.helpers import coerce_int, normalize_school_id


def json_payload():
    """Return the request's JSON object, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def validated_form(form_cls, payload=None):
    """
    Build ``form_cls`` from the JSON body and validate it.

    Only scalar values are handed to WTForms, as strings the way a form
    post would carry them; nulls count as missing. Raises ValidationError
    with the field errors.
    """
    payload = json_payload() if payload is None else payload
    scalars = {}
    for key, value in payload.items():
        if value is None or isinstance(value, (list, dict)):
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        scalars[key] = str(value)
    form = form_cls(formdata=ImmutableMultiDict(scalars))
    if not form.validate():
        raise ValidationError("Invalid request.", details=form.errors)
    return form


def require_school_id():
    school_id = normalize_school_id(request.args.get('schoolId'))
    if not school_id:
        raise ValidationError("schoolId query parameter is required.", details={'field': 'schoolId'})
    return school_id


def optional_int_arg(name):
    raw = request.args.get(name)
    if raw in (None, ''):
        return None
    value = coerce_int(raw)
    if value is None:
        raise ValidationError(f"{name} must be an integer.", details={'field': name})
    return value


def optional_bool_arg(name):
    return (request.args.get(name) or '').strip().lower() in {'1', 'true', 'yes', 'on'}
