"""
Main routes: health check and the class catalog.
"""

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from promotion_engine.extensions import db
from promotion_engine.routes import require_school_id
from promotion_engine.services import class_catalog

# Create blueprint
main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health_check():
    """Simple health check endpoint for uptime monitoring."""
    try:
        db.session.execute(text('SELECT 1'))
        return 'ok', 200
    except SQLAlchemyError:
        current_app.logger.exception('Health check failed')
        return jsonify(error='Database error'), 500


@main_bp.route('/api/classes')
def list_classes():
    """Return the school's classes in promotion order."""
    school_id = require_school_id()
    classes = class_catalog.list_classes(school_id)
    return jsonify(classes=[c.to_dict() for c in classes])
