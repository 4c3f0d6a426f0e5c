"""
Promotion/drop transaction executor.

Takes the operator's per-student decisions for the end of a session and
applies them in two directory calls (promotions incl. graduations, then
drops). After each successful call that batch's ledger rows are appended and
committed, so a later failure never undoes an earlier batch and a retry only
touches the students that still need it.

Retry safety comes from the ledger key ``(student_id, to_session_id)``:
students that already have a matching row are reported as ``already_applied``;
a row that disagrees with the request or the directory (a revoked drop, say)
is a conflict. Students whose directory record already shows the transition,
including the class they left, but who have no row (a crash between the two
writes) get the row appended without writing to the directory again.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from promotion_engine.errors import (
    ConflictError,
    DuplicateError,
    EngineError,
    NotFoundError,
    PartialBatchFailure,
    PreconditionFailed,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from promotion_engine.extensions import db
from promotion_engine.models import TransitionRecord
from promotion_engine.services import class_catalog, history_ledger, session_store
from promotion_engine.services.student_directory import DirectoryWrite, get_directory
from promotion_engine.utils.constants import (
    DECISION_ALIASES,
    DEFAULT_DIRECTORY_TIMEOUT_SECONDS,
    MAX_DIRECTORY_TIMEOUT_SECONDS,
    STATUS_DROP_OUT,
    STATUS_GRADUATED,
    STATUS_PROMOTED,
)
from promotion_engine.utils.helpers import coerce_int


@dataclass
class TransitionRequest:
    """One operator decision as received from the promotion screen."""
    student_id: str
    decision: str
    from_class_id: Optional[int] = None
    section: Optional[str] = None
    remarks: Optional[str] = None


@dataclass
class PlannedTransition:
    student_id: str
    status: str
    from_class_id: int
    to_class_id: int
    section: str
    remarks: Optional[str] = None
    reconciled: bool = False

    def to_write(self):
        return DirectoryWrite(
            student_id=self.student_id,
            from_class_id=self.from_class_id,
            to_class_id=self.to_class_id,
            section=self.section,
            status=self.status,
        )

    def to_record(self, school_id, from_session_id, to_session_id):
        return TransitionRecord(
            school_id=school_id,
            student_id=self.student_id,
            from_session_id=from_session_id,
            to_session_id=to_session_id,
            from_class_id=self.from_class_id,
            to_class_id=self.to_class_id,
            status=self.status,
            remarks=self.remarks,
        )

    def to_dict(self):
        entry = {
            'studentId': self.student_id,
            'status': self.status,
            'fromClassId': self.from_class_id,
            'toClassId': self.to_class_id,
        }
        if self.reconciled:
            entry['reconciled'] = True
        return entry

    def error_entry(self, message):
        return {'studentId': self.student_id, 'status': self.status, 'error': message}


@dataclass
class TransitionOutcome:
    """Per-student result of one executor call."""
    succeeded: List[Dict] = field(default_factory=list)
    already_applied: List[Dict] = field(default_factory=list)
    failed: List[Dict] = field(default_factory=list)
    unknown: List[Dict] = field(default_factory=list)

    @property
    def is_partial(self):
        done = bool(self.succeeded or self.already_applied)
        return done and bool(self.failed or self.unknown)

    @property
    def failed_student_ids(self):
        return [entry['studentId'] for entry in self.failed]

    @property
    def unknown_student_ids(self):
        return [entry['studentId'] for entry in self.unknown]

    def as_error(self):
        """Return the EngineError describing a non-clean outcome, or None."""
        if not self.failed and not self.unknown:
            return None
        if self.is_partial:
            return PartialBatchFailure(
                "Some students could not be transitioned; retry the listed students.",
                failed_student_ids=self.failed_student_ids,
                unknown_student_ids=self.unknown_student_ids,
            )
        if self.unknown:
            return UpstreamTimeout(
                "Student directory timed out; outcome unknown. Retry is safe.",
                details={'unknownStudentIds': self.unknown_student_ids,
                         'failedStudentIds': self.failed_student_ids},
            )
        return UpstreamError(
            "Student directory rejected the transition.",
            details={'failedStudentIds': self.failed_student_ids},
        )

    @property
    def http_status(self):
        error = self.as_error()
        return error.status_code if error else 200

    def to_dict(self):
        error = self.as_error()
        body = error.to_dict() if error else {'status': 'success'}
        body.update({
            'succeeded': self.succeeded,
            'alreadyApplied': self.already_applied,
            'failed': self.failed,
            'unknown': self.unknown,
            'isPartial': self.is_partial,
        })
        return body


def parse_decision(value):
    """Map a wire decision ("Promoted", "Drop Out", ...) to a ledger status."""
    key = ' '.join(str(value or '').split()).lower()
    status = DECISION_ALIASES.get(key)
    if not status:
        raise ValidationError(
            f"Unknown decision '{value}'. Use Promoted or DropOut.",
            details={'decision': value},
        )
    return status


def build_requests(items, decision=None):
    """
    Turn a JSON list of student entries into TransitionRequests.

    ``decision`` forces the same decision for every entry (the promote and
    drop endpoints); otherwise each entry carries its own ``status``.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one student decision is required.")

    requests = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Entry {index} must be an object.")
        student_id = str(item.get('studentId') or '').strip()
        if not student_id:
            raise ValidationError(f"Entry {index} is missing studentId.", details={'index': index})
        status = decision or parse_decision(item.get('status') or item.get('decision'))
        requests.append(TransitionRequest(
            student_id=student_id,
            decision=status,
            from_class_id=coerce_int(item.get('fromClassId')),
            section=(item.get('section') or '').strip() or None,
            remarks=item.get('remarks'),
        ))
    return requests


def resolve_timeout(value=None):
    """Return the directory timeout in seconds, validating caller overrides."""
    if value is None:
        value = current_app.config.get('DIRECTORY_TIMEOUT_SECONDS', DEFAULT_DIRECTORY_TIMEOUT_SECONDS)
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ValidationError("timeout must be a number of seconds.", details={'timeout': value})
    if timeout <= 0 or timeout > MAX_DIRECTORY_TIMEOUT_SECONDS:
        raise ValidationError(
            f"timeout must be between 0 and {MAX_DIRECTORY_TIMEOUT_SECONDS:g} seconds.",
            details={'timeout': value},
        )
    return timeout


def _check_sessions(school_id, from_session_id, to_session_id):
    try:
        active = session_store.get_active_session(school_id)
    except NotFoundError:
        active = None
    if not active or active.id != from_session_id:
        raise PreconditionFailed(
            "Transitions can only start from the school's active session.",
            details={'fromSessionId': from_session_id,
                     'activeSessionId': active.id if active else None},
        )
    try:
        following = session_store.next_session(school_id, from_session_id)
    except NotFoundError:
        raise PreconditionFailed(
            f"No session after {active.year}; create the next session first.",
            details={'fromSessionId': from_session_id},
        )
    if following.id != to_session_id:
        raise PreconditionFailed(
            "toSessionId must be the session immediately after the active one.",
            details={'toSessionId': to_session_id, 'nextSessionId': following.id},
        )


def _ledger_conflict(request, record, snapshot):
    """Return why an existing ledger row disagrees with the request or the directory, or None."""
    recorded = STATUS_DROP_OUT if record.status == STATUS_DROP_OUT else STATUS_PROMOTED
    if recorded != request.decision:
        return f"ledger already holds {record.status} for this session"
    if snapshot is None:
        return f"ledger holds {record.status} but the student is missing from the directory"
    if record.status == STATUS_DROP_OUT:
        if not snapshot.is_dropped:
            return "ledger holds DropOut but the student's drop was revoked"
    elif snapshot.session_id != record.to_session_id:
        return f"ledger holds {record.status} but the student is not in the target session"
    return None


def _landed(school_id, request, snapshot, from_session_id, to_session_id):
    """
    True when the directory already shows exactly this transition.

    The request has to name the class the student left. A student who merely
    sits in the target session (a fresh admission, say) is not a lost write.
    """
    if request.from_class_id is None:
        return False
    try:
        if request.decision == STATUS_DROP_OUT:
            return (snapshot.is_dropped
                    and snapshot.session_id == from_session_id
                    and snapshot.current_class_id == request.from_class_id)
        if snapshot.session_id != to_session_id or snapshot.is_dropped:
            return False
        if snapshot.is_graduated:
            return (snapshot.current_class_id == request.from_class_id
                    and class_catalog.is_top_class(school_id, snapshot.current_class_id))
        if not snapshot.is_active:
            return False
        below = class_catalog.previous_class(school_id, snapshot.current_class_id)
    except NotFoundError:
        return False
    return below is not None and below.id == request.from_class_id


def _reconcile(request, snapshot):
    """Rebuild the ledger row for a student the directory already moved."""
    current_id = snapshot.current_class_id
    section = request.section or snapshot.section_class
    if request.decision == STATUS_DROP_OUT:
        status, from_class_id = STATUS_DROP_OUT, current_id
    elif snapshot.is_graduated:
        status, from_class_id = STATUS_GRADUATED, current_id
    else:
        status, from_class_id = STATUS_PROMOTED, request.from_class_id
    return PlannedTransition(request.student_id, status, from_class_id, current_id,
                             section, request.remarks, reconciled=True)


def _identity_problem(school_id, snapshot):
    if snapshot is None:
        return "student not found"
    if snapshot.school_id and snapshot.school_id != school_id:
        return "student belongs to another school"
    if snapshot.is_transfer_cert_issued:
        return "transfer certificate issued"
    return None


def _enrollment_problem(from_session_id, to_session_id, snapshot):
    if not snapshot.is_active:
        return "student is not active"
    if snapshot.session_id == to_session_id:
        return "student is already enrolled in the target session"
    if snapshot.session_id != from_session_id:
        return "student is not enrolled in the source session"
    return None


def _plan(school_id, request, snapshot):
    current = class_catalog.get_class(school_id, snapshot.current_class_id)
    section = request.section or snapshot.section_class
    if request.decision == STATUS_DROP_OUT:
        return PlannedTransition(request.student_id, STATUS_DROP_OUT, current.id, current.id,
                                 section, request.remarks)
    if class_catalog.is_top_class(school_id, current.id):
        return PlannedTransition(request.student_id, STATUS_GRADUATED, current.id, current.id,
                                 section, request.remarks)
    following = class_catalog.next_class(school_id, current.id)
    return PlannedTransition(request.student_id, STATUS_PROMOTED, current.id, following.id,
                             section, request.remarks)


def _record_batch(school_id, from_session_id, to_session_id, batch, outcome):
    """Append and commit ledger rows for students whose directory write landed."""
    added = []
    try:
        for planned in batch:
            try:
                history_ledger.append(planned.to_record(school_id, from_session_id, to_session_id))
            except DuplicateError:
                outcome.already_applied.append(planned.to_dict())
                continue
            added.append(planned)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            f"Ledger write failed for school {school_id} after directory update"
        )
        outcome.unknown.extend(
            p.error_entry("Directory updated but ledger write failed; retry to reconcile.")
            for p in batch
        )
        return
    outcome.succeeded.extend(p.to_dict() for p in added)


def execute_transitions(school_id, from_session_id, to_session_id, requests,
                        timeout=None, directory=None):
    """
    Apply promotion/drop decisions for one school.

    Raises ValidationError, ConflictError or PreconditionFailed before
    anything is written.
    Directory failures after validation are reported per student in the
    returned TransitionOutcome rather than raised.
    """
    if not requests:
        raise ValidationError("At least one student decision is required.")
    seen, repeated = set(), set()
    for request in requests:
        if request.student_id in seen:
            repeated.add(request.student_id)
        seen.add(request.student_id)
    if repeated:
        raise ValidationError(
            "Each student may appear only once per request.",
            details={'studentIds': sorted(repeated)},
        )

    timeout = resolve_timeout(timeout)
    directory = directory or get_directory()
    _check_sessions(school_id, from_session_id, to_session_id)

    outcome = TransitionOutcome()
    ids = [r.student_id for r in requests]
    existing = history_ledger.existing_keys(ids, to_session_id)

    # Read failures propagate: nothing has been written yet
    snapshots = directory.get_students(school_id, ids, timeout=timeout)

    reconciled, planned, problems, conflicts = [], [], {}, {}
    for request in requests:
        snapshot = snapshots.get(request.student_id)
        record = existing.get(request.student_id)
        if record is not None:
            conflict = _ledger_conflict(request, record, snapshot)
            if conflict:
                conflicts[request.student_id] = conflict
            else:
                outcome.already_applied.append({
                    'studentId': record.student_id,
                    'status': record.status,
                    'fromClassId': record.from_class_id,
                    'toClassId': record.to_class_id,
                })
            continue
        reason = _identity_problem(school_id, snapshot)
        if reason:
            problems[request.student_id] = reason
            continue
        if _landed(school_id, request, snapshot, from_session_id, to_session_id):
            reconciled.append(_reconcile(request, snapshot))
            continue
        reason = _enrollment_problem(from_session_id, to_session_id, snapshot)
        if reason:
            problems[request.student_id] = reason
            continue
        try:
            planned.append(_plan(school_id, request, snapshot))
        except NotFoundError:
            problems[request.student_id] = "current class is not in the school's catalog"

    if conflicts:
        raise ConflictError(
            f"{len(conflicts)} student(s) already have a different transition into this session.",
            details={'students': conflicts},
        )
    if problems:
        raise PreconditionFailed(
            f"{len(problems)} student(s) are not eligible for this transition.",
            details={'students': problems},
        )

    if not reconciled and not planned:
        current_app.logger.info(
            f"Transition for school {school_id} into session {to_session_id}: "
            f"all {len(ids)} students already applied"
        )
        return outcome

    if reconciled:
        current_app.logger.info(
            f"Reconciling {len(reconciled)} ledger row(s) for school {school_id} "
            f"into session {to_session_id}"
        )
        _record_batch(school_id, from_session_id, to_session_id, reconciled, outcome)

    promotions = [p for p in planned if p.status != STATUS_DROP_OUT]
    drops = [p for p in planned if p.status == STATUS_DROP_OUT]

    for label, batch, apply in (
        ('promotion', promotions, directory.apply_promotions),
        ('drop', drops, directory.apply_drops),
    ):
        if not batch:
            continue
        try:
            apply(school_id, from_session_id, to_session_id,
                  [p.to_write() for p in batch], timeout=timeout)
        except UpstreamTimeout as e:
            current_app.logger.warning(
                f"{label.capitalize()} batch for school {school_id} timed out "
                f"({len(batch)} students, outcome unknown)"
            )
            outcome.unknown.extend(p.error_entry(e.message) for p in batch)
            continue
        except EngineError as e:
            current_app.logger.error(
                f"{label.capitalize()} batch for school {school_id} failed: {e.message}"
            )
            outcome.failed.extend(p.error_entry(e.message) for p in batch)
            continue
        _record_batch(school_id, from_session_id, to_session_id, batch, outcome)

    current_app.logger.info(
        f"Transition for school {school_id} {from_session_id}->{to_session_id}: "
        f"succeeded={len(outcome.succeeded)} already_applied={len(outcome.already_applied)} "
        f"failed={len(outcome.failed)} unknown={len(outcome.unknown)}"
    )
    return outcome
