import os
import sys

# Override env vars for testing
os.environ["SECRET_KEY"] = "test-secret"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["FLASK_ENV"] = "testing"
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")
os.environ.pop("STUDENT_DIRECTORY_URL", None)

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from promotion_engine import create_app
from promotion_engine.extensions import db
from promotion_engine.models import StudentEnrollment
from promotion_engine.services import class_catalog, session_store

SCHOOL_ID = "SCH001"
OTHER_SCHOOL_ID = "SCH002"


@pytest.fixture
def app():
    """Provide a fresh Flask app instance for each test."""
    flask_app = create_app({
        "TESTING": True,
        "ENV": "testing",
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "DIRECTORY_TIMEOUT_SECONDS": 5.0,
    })
    yield flask_app


@pytest.fixture
def client(app):
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    client = app.test_client()
    yield client
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def classes(client):
    """Default progression for SCHOOL_ID, keyed by class name."""
    loaded = class_catalog.load_classes(SCHOOL_ID)
    db.session.commit()
    return {c.name: c for c in loaded}


@pytest.fixture
def current_session(client):
    session_obj = session_store.create_session(SCHOOL_ID, "2024-25", "2024-04-01", "2025-03-31")
    session_store.activate_session(SCHOOL_ID, session_obj.id)
    return session_obj


@pytest.fixture
def next_session(client, current_session):
    return session_store.create_session(SCHOOL_ID, "2025-26", "2025-04-01", "2026-03-31")


@pytest.fixture
def enroll(client):
    """Factory that adds a student enrollment and commits it."""
    def _enroll(student_id, class_def, session_obj, **overrides):
        enrollment = StudentEnrollment(
            student_id=student_id,
            school_id=overrides.pop("school_id", SCHOOL_ID),
            session_id=session_obj.id,
            current_class_id=class_def.id,
            student_name=overrides.pop("student_name", f"Student {student_id}"),
            section_class=overrides.pop("section_class", "A"),
            **overrides,
        )
        db.session.add(enrollment)
        db.session.commit()
        return enrollment
    return _enroll
