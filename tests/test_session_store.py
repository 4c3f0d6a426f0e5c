import pytest
from sqlalchemy import text

from promotion_engine.errors import ConflictError, NotFoundError, ValidationError
from promotion_engine.extensions import db
from promotion_engine.models import AcademicSession, SessionActivation
from promotion_engine.services import session_store

SCHOOL_ID = "SCH001"
OTHER_SCHOOL_ID = "SCH002"


def _active_ids(school_id):
    db.session.expire_all()
    return [s.id for s in AcademicSession.query.filter_by(school_id=school_id, is_active=True)]


def test_create_session_is_inactive(client):
    session_obj = session_store.create_session(SCHOOL_ID, "2024-25", "2024-04-01", "2025-03-31")
    assert session_obj.id is not None
    assert session_obj.is_active is False
    assert session_obj.start_date.isoformat() == "2024-04-01"


def test_create_session_accepts_iso_timestamps(client):
    session_obj = session_store.create_session(SCHOOL_ID, "2024-25", "2024-04-01T00:00:00Z", None)
    assert session_obj.start_date.isoformat() == "2024-04-01"
    assert session_obj.end_date is None


@pytest.mark.parametrize('year, start, end', [
    ("", None, None),
    ("x" * 21, None, None),
    ("2024-25", "2025-03-31", "2024-04-01"),
    ("2024-25", "31/03/2025", None),
])
def test_create_session_rejects_bad_input(client, year, start, end):
    with pytest.raises(ValidationError):
        session_store.create_session(SCHOOL_ID, year, start, end)


def test_create_session_rejects_duplicate_year(client):
    session_store.create_session(SCHOOL_ID, "2024-25")
    with pytest.raises(ValidationError):
        session_store.create_session(SCHOOL_ID, "2024-25")
    # Same label in another school is fine
    session_store.create_session(OTHER_SCHOOL_ID, "2024-25")


def test_list_sessions_orders_by_start_date(client):
    session_store.create_session(SCHOOL_ID, "B-later", "2025-04-01", "2026-03-31")
    session_store.create_session(SCHOOL_ID, "A-earlier", "2024-04-01", "2025-03-31")
    session_store.create_session(SCHOOL_ID, "C-earliest", "2023-04-01", "2024-03-31")
    assert [s.year for s in session_store.list_sessions(SCHOOL_ID)] == ["C-earliest", "A-earlier", "B-later"]


def test_list_sessions_falls_back_to_year_label_when_undated(client):
    session_store.create_session(SCHOOL_ID, "2025-26", "2025-04-01", None)
    session_store.create_session(SCHOOL_ID, "2023-24")
    session_store.create_session(SCHOOL_ID, "2024-25", "2024-04-01", None)
    assert [s.year for s in session_store.list_sessions(SCHOOL_ID)] == ["2023-24", "2024-25", "2025-26"]


def test_get_active_session_when_none(client):
    session_store.create_session(SCHOOL_ID, "2024-25")
    with pytest.raises(NotFoundError):
        session_store.get_active_session(SCHOOL_ID)
    assert session_store.current_version(SCHOOL_ID) == 0


def test_activation_leaves_exactly_one_active(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25")
    second = session_store.create_session(SCHOOL_ID, "2025-26")

    _, state, changed = session_store.activate_session(SCHOOL_ID, first.id)
    assert changed is True
    assert _active_ids(SCHOOL_ID) == [first.id]
    first_version = state.version

    _, state, changed = session_store.activate_session(SCHOOL_ID, second.id)
    assert changed is True
    assert _active_ids(SCHOOL_ID) == [second.id]
    assert state.version == first_version + 1
    assert session_store.get_active_session(SCHOOL_ID).id == second.id


def test_activating_active_session_is_a_noop(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25")
    _, state, _ = session_store.activate_session(SCHOOL_ID, first.id)
    version = state.version

    _, state, changed = session_store.activate_session(SCHOOL_ID, first.id)
    assert changed is False
    assert state.version == version
    assert SessionActivation.query.filter_by(school_id=SCHOOL_ID).count() == 1


def test_activation_is_logged(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25")
    second = session_store.create_session(SCHOOL_ID, "2025-26")
    session_store.activate_session(SCHOOL_ID, first.id)
    session_store.activate_session(SCHOOL_ID, second.id)

    log = [a.to_dict() for a in SessionActivation.query.order_by(SessionActivation.id)]
    assert [(e['previousSessionId'], e['sessionId']) for e in log] == [
        (None, first.id), (first.id, second.id)
    ]
    assert log[1]['version'] == log[0]['version'] + 1


def test_activate_unknown_session(client):
    with pytest.raises(NotFoundError):
        session_store.activate_session(SCHOOL_ID, 12345)


def test_activate_session_of_other_school_is_not_found(client):
    foreign = session_store.create_session(OTHER_SCHOOL_ID, "2024-25")
    with pytest.raises(NotFoundError):
        session_store.activate_session(SCHOOL_ID, foreign.id)


def test_stale_expected_version_conflicts(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25")
    second = session_store.create_session(SCHOOL_ID, "2025-26")
    session_store.activate_session(SCHOOL_ID, first.id)
    version = session_store.current_version(SCHOOL_ID)

    session_store.activate_session(SCHOOL_ID, second.id, expected_version=version)

    # A screen still holding the old version cannot switch back
    with pytest.raises(ConflictError):
        session_store.activate_session(SCHOOL_ID, first.id, expected_version=version)
    assert _active_ids(SCHOOL_ID) == [second.id]


def test_lost_race_rolls_back_and_keeps_invariant(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25")
    second = session_store.create_session(SCHOOL_ID, "2025-26")
    session_store.activate_session(SCHOOL_ID, first.id)

    # Load the pointer, then let "another writer" bump its version underneath
    state = session_store.get_session_state(SCHOOL_ID)
    assert state is not None
    db.session.execute(
        text("UPDATE school_session_states SET version = version + 1 WHERE school_id = :sid"),
        {"sid": SCHOOL_ID},
    )

    with pytest.raises(ConflictError):
        session_store.activate_session(SCHOOL_ID, second.id)

    assert _active_ids(SCHOOL_ID) == [first.id]
    assert SessionActivation.query.filter_by(school_id=SCHOOL_ID).count() == 1


def test_schools_activate_independently(client):
    mine = session_store.create_session(SCHOOL_ID, "2024-25")
    theirs = session_store.create_session(OTHER_SCHOOL_ID, "2024-25")
    session_store.activate_session(SCHOOL_ID, mine.id)
    session_store.activate_session(OTHER_SCHOOL_ID, theirs.id)
    assert _active_ids(SCHOOL_ID) == [mine.id]
    assert _active_ids(OTHER_SCHOOL_ID) == [theirs.id]


def test_next_session(client):
    first = session_store.create_session(SCHOOL_ID, "2024-25", "2024-04-01", None)
    second = session_store.create_session(SCHOOL_ID, "2025-26", "2025-04-01", None)
    assert session_store.next_session(SCHOOL_ID, first.id).id == second.id

    with pytest.raises(NotFoundError):
        session_store.next_session(SCHOOL_ID, second.id)
    with pytest.raises(NotFoundError):
        session_store.next_session(SCHOOL_ID, 9999)
