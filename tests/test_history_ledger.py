import pytest

from promotion_engine.errors import DuplicateError, LedgerImmutableError, ValidationError
from promotion_engine.extensions import db
from promotion_engine.models import SessionActivation, TransitionRecord
from promotion_engine.services import history_ledger
from promotion_engine.utils.constants import STATUS_DROP_OUT, STATUS_PROMOTED

SCHOOL_ID = "SCH001"


@pytest.fixture
def record_factory(classes, current_session, next_session):
    def _make(student_id, status=STATUS_PROMOTED, from_class='VIII', to_class='IX', **extra):
        return TransitionRecord(
            school_id=extra.pop('school_id', SCHOOL_ID),
            student_id=student_id,
            from_session_id=current_session.id,
            to_session_id=next_session.id,
            from_class_id=classes[from_class].id,
            to_class_id=classes[to_class].id,
            status=status,
            **extra,
        )
    return _make


def test_append_and_find(record_factory, next_session):
    history_ledger.append(record_factory('S1'))
    db.session.commit()

    found = history_ledger.find_record('S1', next_session.id)
    assert found is not None
    assert found.status == STATUS_PROMOTED


def test_append_same_key_twice_is_duplicate(record_factory):
    history_ledger.append(record_factory('S1'))
    db.session.commit()

    with pytest.raises(DuplicateError):
        history_ledger.append(record_factory('S1', status=STATUS_DROP_OUT, to_class='VIII'))
    assert TransitionRecord.query.filter_by(student_id='S1').count() == 1


def test_append_rejects_unknown_status(record_factory):
    with pytest.raises(ValidationError):
        history_ledger.append(record_factory('S1', status='Retained'))


def test_records_refuse_update(record_factory):
    record = history_ledger.append(record_factory('S1'))
    db.session.commit()

    record.remarks = 'edited'
    with pytest.raises(LedgerImmutableError):
        db.session.flush()
    db.session.rollback()
    assert TransitionRecord.query.one().remarks is None


def test_records_refuse_delete(record_factory):
    record = history_ledger.append(record_factory('S1'))
    db.session.commit()

    db.session.delete(record)
    with pytest.raises(LedgerImmutableError):
        db.session.flush()
    db.session.rollback()
    assert TransitionRecord.query.count() == 1


def test_activation_log_refuses_update(current_session):
    entry = SessionActivation.query.one()
    entry.version = 99
    with pytest.raises(LedgerImmutableError):
        db.session.flush()
    db.session.rollback()


def test_query_by_school_filters_and_names(record_factory, enroll, classes, current_session):
    enroll('S1', classes['IX'], current_session, student_name='Asha Rao')
    history_ledger.append(record_factory('S1'))
    history_ledger.append(record_factory('S2', status=STATUS_DROP_OUT, to_class='VIII'))
    history_ledger.append(record_factory('S9', school_id='SCH002'))
    db.session.commit()

    rows = history_ledger.query_by_school(SCHOOL_ID)
    assert {r.student_id for r, _ in rows} == {'S1', 'S2'}
    # Newest first
    assert rows[0][0].student_id == 'S2'
    names = {r.student_id: name for r, name in rows}
    assert names['S1'] == 'Asha Rao'
    assert names['S2'] is None

    dropped = history_ledger.query_by_school(SCHOOL_ID, status=STATUS_DROP_OUT)
    assert [r.student_id for r, _ in dropped] == ['S2']

    by_session = history_ledger.query_by_school(SCHOOL_ID, session_id=current_session.id)
    assert len(by_session) == 2
    assert history_ledger.query_by_school(SCHOOL_ID, session_id=9999) == []


def test_query_by_student_and_session(record_factory, next_session):
    history_ledger.append(record_factory('S1'))
    history_ledger.append(record_factory('S2'))
    db.session.commit()

    assert [r.student_id for r in history_ledger.query_by_student('S1')] == ['S1']
    assert len(history_ledger.query_by_session(next_session.id)) == 2


def test_record_serialises_class_names(record_factory):
    history_ledger.append(record_factory('S1'))
    db.session.commit()

    data = TransitionRecord.query.one().to_dict()
    assert data['fromClassName'] == 'VIII'
    assert data['toClassName'] == 'IX'
    assert data['createdAt'].endswith('Z')
