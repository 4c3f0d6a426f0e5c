"""
Student directory adapters.

The engine reads student enrollments and submits promotion/drop batches
through a StudentDirectory. Two implementations:

- SqlStudentDirectory: enrollments live in this service's database
  (``student_enrollments``). Default.
- HttpStudentDirectory: a remote admissions service, reached with
  ``urllib`` and a per-call timeout. A timeout is reported as
  UpstreamTimeout (outcome unknown), any other failure as UpstreamError.

Each batch call is all-or-nothing on the directory side and skips students
whose enrollment already reflects the requested transition, so a batch can
be resubmitted safely.
"""

import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from promotion_engine.errors import (
    NotFoundError,
    PreconditionFailed,
    UpstreamError,
    UpstreamTimeout,
)
from promotion_engine.extensions import db
from promotion_engine.models import StudentEnrollment
from promotion_engine.utils.constants import DEFAULT_SECTION, STATUS_GRADUATED
from promotion_engine.utils.helpers import coerce_int


@dataclass
class StudentSnapshot:
    """Directory view of one student at read time."""
    student_id: str
    school_id: str
    session_id: Optional[int]
    current_class_id: Optional[int]
    section_class: str = DEFAULT_SECTION
    is_active: bool = True
    is_dropped: bool = False
    is_graduated: bool = False
    is_transfer_cert_issued: bool = False
    student_name: Optional[str] = None
    admission_number: Optional[str] = None

    @classmethod
    def from_enrollment(cls, enrollment):
        return cls(
            student_id=enrollment.student_id,
            school_id=enrollment.school_id,
            session_id=enrollment.session_id,
            current_class_id=enrollment.current_class_id,
            section_class=enrollment.section_class or DEFAULT_SECTION,
            is_active=bool(enrollment.is_active),
            is_dropped=bool(enrollment.is_dropped),
            is_graduated=bool(enrollment.is_graduated),
            is_transfer_cert_issued=bool(enrollment.is_transfer_cert_issued),
            student_name=enrollment.student_name,
            admission_number=enrollment.admission_number,
        )

    @classmethod
    def from_payload(cls, payload):
        """Build a snapshot from the admissions service's JSON (camelCase)."""
        return cls(
            student_id=str(payload.get('studentId') or payload.get('id')),
            school_id=str(payload.get('schoolId') or ''),
            session_id=coerce_int(payload.get('sessionId')),
            current_class_id=coerce_int(payload.get('currentClassId') or payload.get('classId')),
            section_class=payload.get('sectionClass') or payload.get('sectionclass') or DEFAULT_SECTION,
            is_active=_truthy(payload.get('isActive', True)),
            is_dropped=_truthy(payload.get('isDropped') or payload.get('isStudentmarkdrop')),
            is_graduated=_truthy(payload.get('isGraduated')),
            is_transfer_cert_issued=_truthy(payload.get('isTransferCertIssued')),
            student_name=payload.get('studentName'),
            admission_number=payload.get('admissionNumber') or payload.get('Admission_Number'),
        )

    def to_dict(self):
        return {
            'studentId': self.student_id,
            'schoolId': self.school_id,
            'sessionId': self.session_id,
            'currentClassId': self.current_class_id,
            'sectionClass': self.section_class,
            'studentName': self.student_name,
            'admissionNumber': self.admission_number,
            'isActive': self.is_active,
            'isDropped': self.is_dropped,
            'isGraduated': self.is_graduated,
            'isTransferCertIssued': self.is_transfer_cert_issued,
        }


@dataclass
class DirectoryWrite:
    """One student's change inside a promotion or drop batch."""
    student_id: str
    from_class_id: int
    to_class_id: int
    section: str
    status: str

    def to_payload(self):
        return {
            'studentId': self.student_id,
            'fromClassId': self.from_class_id,
            'toClassId': self.to_class_id,
            'section': self.section,
            'status': self.status,
        }


def _truthy(value):
    # The admissions service sends some flags as "true"/"false" strings
    if isinstance(value, str):
        return value.strip().lower() in {'1', 'true', 'yes', 'on'}
    return bool(value)


class StudentDirectory:
    """Interface the executor and routes depend on."""

    def get_students(self, school_id, student_ids, timeout=None) -> Dict[str, StudentSnapshot]:
        raise NotImplementedError

    def list_students(self, school_id, session_id=None, class_id=None,
                      include_inactive=False, timeout=None) -> List[StudentSnapshot]:
        raise NotImplementedError

    def apply_promotions(self, school_id, from_session_id, to_session_id,
                         writes: List[DirectoryWrite], timeout=None):
        raise NotImplementedError

    def apply_drops(self, school_id, from_session_id, to_session_id,
                    writes: List[DirectoryWrite], timeout=None):
        raise NotImplementedError

    def list_dropped(self, school_id, timeout=None) -> List[StudentSnapshot]:
        return [
            s for s in self.list_students(school_id, include_inactive=True, timeout=timeout)
            if s.is_dropped
        ]

    def revoke_drop(self, school_id, student_id, timeout=None) -> StudentSnapshot:
        raise NotImplementedError


class SqlStudentDirectory(StudentDirectory):
    """
    Directory backed by the ``student_enrollments`` table.

    Calls run in-process, so ``timeout`` is accepted for interface parity
    and the database's own lock timeout bounds them.
    """

    def get_students(self, school_id, student_ids, timeout=None):
        if not student_ids:
            return {}
        rows = StudentEnrollment.query.filter(
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.student_id.in_(list(student_ids)),
        ).all()
        return {row.student_id: StudentSnapshot.from_enrollment(row) for row in rows}

    def list_students(self, school_id, session_id=None, class_id=None,
                      include_inactive=False, timeout=None):
        query = StudentEnrollment.query.filter_by(school_id=school_id)
        if session_id is not None:
            query = query.filter_by(session_id=session_id)
        if class_id is not None:
            query = query.filter_by(current_class_id=class_id)
        if not include_inactive:
            query = query.filter_by(is_active=True)
        rows = query.order_by(StudentEnrollment.student_name.asc(), StudentEnrollment.student_id.asc()).all()
        return [StudentSnapshot.from_enrollment(row) for row in rows]

    def _load_for_write(self, school_id, writes):
        ids = [w.student_id for w in writes]
        rows = StudentEnrollment.query.filter(
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.student_id.in_(ids),
        ).all()
        by_id = {row.student_id: row for row in rows}
        missing = [sid for sid in ids if sid not in by_id]
        if missing:
            raise UpstreamError(
                "Directory rejected the batch: unknown students.",
                details={'studentIds': missing},
            )
        return by_id

    def apply_promotions(self, school_id, from_session_id, to_session_id, writes, timeout=None):
        try:
            by_id = self._load_for_write(school_id, writes)
            for write in writes:
                enrollment = by_id[write.student_id]
                if enrollment.session_id == to_session_id:
                    continue
                enrollment.current_class_id = write.to_class_id
                enrollment.section_class = write.section or enrollment.section_class
                enrollment.session_id = to_session_id
                if write.status == STATUS_GRADUATED:
                    enrollment.is_active = False
                    enrollment.is_graduated = True
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Promotion batch write failed")
            raise UpstreamError(f"Promotion batch write failed: {exc.__class__.__name__}")
        except UpstreamError:
            db.session.rollback()
            raise

    def apply_drops(self, school_id, from_session_id, to_session_id, writes, timeout=None):
        try:
            by_id = self._load_for_write(school_id, writes)
            for write in writes:
                enrollment = by_id[write.student_id]
                if enrollment.is_dropped:
                    continue
                enrollment.is_active = False
                enrollment.is_dropped = True
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Drop batch write failed")
            raise UpstreamError(f"Drop batch write failed: {exc.__class__.__name__}")
        except UpstreamError:
            db.session.rollback()
            raise

    def list_dropped(self, school_id, timeout=None):
        rows = (
            StudentEnrollment.query
            .filter_by(school_id=school_id, is_dropped=True)
            .order_by(StudentEnrollment.student_name.asc(), StudentEnrollment.student_id.asc())
            .all()
        )
        return [StudentSnapshot.from_enrollment(row) for row in rows]

    def revoke_drop(self, school_id, student_id, timeout=None):
        enrollment = StudentEnrollment.query.filter_by(school_id=school_id, student_id=student_id).first()
        if not enrollment:
            raise NotFoundError(f"Student {student_id} not found for school {school_id}.")
        if not enrollment.is_dropped:
            raise PreconditionFailed(f"Student {student_id} is not marked as dropped.")

        enrollment.is_dropped = False
        enrollment.is_active = True
        db.session.commit()
        return StudentSnapshot.from_enrollment(enrollment)


class HttpStudentDirectory(StudentDirectory):
    """
    Client for a remote admissions service.

    Endpoints mirror the school app's API:
    ``GET  /students/by-school/<schoolId>?sessionId=``,
    ``POST /students/promote``, ``POST /students/drop``,
    ``PATCH /students/<id>/revoke``.
    """

    def __init__(self, base_url, token=None, default_timeout=10.0):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.default_timeout = default_timeout

    def _request(self, method, path, payload=None, timeout=None):
        url = f"{self.base_url}{path}"
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = urllib.request.Request(url, data=data, method=method)
        req.add_header('Accept', 'application/json')
        if data is not None:
            req.add_header('Content-Type', 'application/json')
        if self.token:
            req.add_header('Authorization', f'Bearer {self.token}')

        timeout = timeout or self.default_timeout
        try:
            with urllib.request.urlopen(req, timeout=timeout) as response:
                body = response.read().decode('utf-8')
        except urllib.error.HTTPError as e:
            current_app.logger.error(f"Directory {method} {path} returned HTTP {e.code}")
            if e.code == 404:
                raise NotFoundError(f"Directory resource not found: {path}")
            if e.code == 412:
                raise PreconditionFailed(f"Directory refused {method} {path}.")
            raise UpstreamError(f"Directory {method} {path} failed with HTTP {e.code}.")
        except (socket.timeout, TimeoutError) as e:
            current_app.logger.warning(f"Directory {method} {path} timed out after {timeout}s")
            raise UpstreamTimeout(
                f"Directory did not answer within {timeout} seconds; outcome unknown.",
                details={'path': path},
            )
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                current_app.logger.warning(f"Directory {method} {path} timed out after {timeout}s")
                raise UpstreamTimeout(
                    f"Directory did not answer within {timeout} seconds; outcome unknown.",
                    details={'path': path},
                )
            current_app.logger.error(f"Directory network error on {method} {path}: {e}")
            raise UpstreamError(f"Directory unreachable: {e.reason}")

        if not body:
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            current_app.logger.error(f"Directory JSON decode error on {method} {path}: {e}")
            raise UpstreamError("Directory returned an unreadable response.")

    def list_students(self, school_id, session_id=None, class_id=None,
                      include_inactive=False, timeout=None):
        path = f"/students/by-school/{urllib.parse.quote(str(school_id))}"
        if session_id is not None:
            path += "?" + urllib.parse.urlencode({'sessionId': session_id})
        data = self._request('GET', path, timeout=timeout)
        students = [StudentSnapshot.from_payload(item) for item in data.get('students', [])]
        for student in students:
            student.school_id = student.school_id or str(school_id)
        if class_id is not None:
            students = [s for s in students if s.current_class_id == class_id]
        if not include_inactive:
            students = [s for s in students if s.is_active]
        return students

    def get_students(self, school_id, student_ids, timeout=None):
        wanted = set(student_ids)
        if not wanted:
            return {}
        students = self.list_students(school_id, include_inactive=True, timeout=timeout)
        return {s.student_id: s for s in students if s.student_id in wanted}

    def apply_promotions(self, school_id, from_session_id, to_session_id, writes, timeout=None):
        self._request('POST', '/students/promote', {
            'schoolId': school_id,
            'fromSessionId': from_session_id,
            'toSessionId': to_session_id,
            'promotions': [w.to_payload() for w in writes],
        }, timeout=timeout)

    def apply_drops(self, school_id, from_session_id, to_session_id, writes, timeout=None):
        self._request('POST', '/students/drop', {
            'schoolId': school_id,
            'fromSessionId': from_session_id,
            'toSessionId': to_session_id,
            'drops': [w.to_payload() for w in writes],
        }, timeout=timeout)

    def revoke_drop(self, school_id, student_id, timeout=None):
        path = f"/students/{urllib.parse.quote(str(student_id))}/revoke"
        data = self._request('PATCH', path, {'schoolId': school_id}, timeout=timeout)
        payload = data.get('student') or {'studentId': student_id, 'schoolId': school_id, 'isActive': True}
        return StudentSnapshot.from_payload(payload)


def get_directory(app=None):
    """
    Return the app's configured directory, creating it on first use.

    ``STUDENT_DIRECTORY_URL`` selects the HTTP client; otherwise the SQL
    directory is used.
    """
    app = app or current_app
    directory = app.extensions.get('student_directory')
    if directory is None:
        base_url = app.config.get('STUDENT_DIRECTORY_URL')
        if base_url:
            directory = HttpStudentDirectory(
                base_url,
                token=app.config.get('STUDENT_DIRECTORY_TOKEN'),
                default_timeout=app.config.get('DIRECTORY_TIMEOUT_SECONDS'),
            )
        else:
            directory = SqlStudentDirectory()
        app.extensions['student_directory'] = directory
    return directory
