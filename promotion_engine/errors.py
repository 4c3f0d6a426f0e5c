"""
Error taxonomy for the promotion engine.

Every service-level failure is an EngineError subclass carrying the HTTP
status and a machine-readable code. The app factory registers a single
handler that renders them as JSON:

    {"status": "error", "error": "<CODE>", "message": "...", "details": {...}}

Nothing here is retried internally; callers decide whether to retry based on
the code (UPSTREAM_TIMEOUT is retryable, VALIDATION_ERROR never is).
"""

from flask import jsonify


class EngineError(Exception):
    """Base exception with a consistent JSON shape."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self):
        body = {
            "status": "error",
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EngineError):
    """Malformed input (caller's fault)."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(EngineError):
    """Missing session, class or student."""
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(EngineError):
    """Stale activation version, or a ledger row that contradicts a new transition."""
    status_code = 409
    code = "CONFLICT"


class DuplicateError(EngineError):
    """Ledger key already exists; the intended state is already reached."""
    status_code = 409
    code = "DUPLICATE"


class PreconditionFailed(EngineError):
    """
    Missing active/next session or ineligible students.

    Must be resolved by an explicit operator action, e.g. creating the next
    session first.
    """
    status_code = 412
    code = "PRECONDITION_FAILED"


class PartialBatchFailure(EngineError):
    """Some per-student writes failed; details list them for targeted retry."""
    status_code = 207
    code = "PARTIAL_BATCH_FAILURE"

    def __init__(self, message, failed_student_ids=None, unknown_student_ids=None, details=None):
        self.failed_student_ids = list(failed_student_ids or [])
        self.unknown_student_ids = list(unknown_student_ids or [])
        details = dict(details or {})
        details.setdefault("failedStudentIds", self.failed_student_ids)
        details.setdefault("unknownStudentIds", self.unknown_student_ids)
        super().__init__(message, details)


class UpstreamError(EngineError):
    """The student directory rejected or failed a write."""
    status_code = 502
    code = "UPSTREAM_ERROR"


class UpstreamTimeout(EngineError):
    """The student directory did not answer in time; outcome unknown."""
    status_code = 504
    code = "UPSTREAM_TIMEOUT"


class LedgerImmutableError(EngineError):
    """Raised when code attempts to update or delete a ledger row."""
    status_code = 500
    code = "LEDGER_IMMUTABLE"


def register_error_handlers(app):
    """Render EngineError subclasses as JSON responses."""

    @app.errorhandler(EngineError)
    def handle_engine_error(error):
        from promotion_engine.extensions import db

        # Leave the scoped session usable for the teardown
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f"{error.code}: {error.message}")
        else:
            app.logger.info(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"status": "error", "error": "NOT_FOUND", "message": "Resource not found."}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"status": "error", "error": "METHOD_NOT_ALLOWED", "message": "Method not allowed."}), 405

    @app.errorhandler(429)
    def handle_rate_limited(error):
        return jsonify({"status": "error", "error": "RATE_LIMITED", "message": "Too many requests."}), 429
