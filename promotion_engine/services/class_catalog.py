"""
Class catalog: ordered classes per school.

Promotion order comes from the persisted ``ordinal`` column, never from the
position of a class in a fetched list.
"""

from flask import current_app
from sqlalchemy import func, or_

from promotion_engine.errors import NotFoundError, PreconditionFailed, ValidationError
from promotion_engine.extensions import db
from promotion_engine.models import ClassDefinition, StudentEnrollment, TransitionRecord
from promotion_engine.utils.constants import DEFAULT_CLASS_PROGRESSION


def list_classes(school_id):
    """Return the school's classes ordered by ordinal."""
    return (
        ClassDefinition.query
        .filter_by(school_id=school_id)
        .order_by(ClassDefinition.ordinal.asc())
        .all()
    )


def get_class(school_id, class_id):
    class_def = ClassDefinition.query.filter_by(school_id=school_id, id=class_id).first()
    if not class_def:
        raise NotFoundError(f"Class {class_id} not found for school {school_id}.")
    return class_def


def max_ordinal(school_id):
    return db.session.query(func.max(ClassDefinition.ordinal)).filter(
        ClassDefinition.school_id == school_id
    ).scalar()


def is_top_class(school_id, class_id):
    class_def = get_class(school_id, class_id)
    return class_def.ordinal == max_ordinal(school_id)


def next_class(school_id, class_id):
    """
    Return the class at ``ordinal + 1``.

    At the maximum ordinal the same class is returned; callers that need to
    tell promotion apart from graduation check ``is_top_class``.
    """
    current = get_class(school_id, class_id)
    following = ClassDefinition.query.filter_by(
        school_id=school_id, ordinal=current.ordinal + 1
    ).first()
    return following or current


def load_classes(school_id, names=None):
    """
    Replace a school's catalog with ``names`` in promotion order.

    Existing classes keep their ids (matched by name) so enrollments and
    ledger rows stay valid; a class that is referenced cannot be removed.
    The caller commits.
    """
    names = [n.strip() for n in (names or DEFAULT_CLASS_PROGRESSION)]
    if any(not n for n in names):
        raise ValidationError("Class names cannot be blank.")
    if len(set(n.lower() for n in names)) != len(names):
        raise ValidationError("Class names must be unique.")

    existing = {c.name.lower(): c for c in list_classes(school_id)}
    wanted = {n.lower() for n in names}

    for key, class_def in existing.items():
        if key in wanted:
            continue
        in_use = (
            StudentEnrollment.query.filter_by(current_class_id=class_def.id).first()
            or TransitionRecord.query.filter(
                or_(
                    TransitionRecord.from_class_id == class_def.id,
                    TransitionRecord.to_class_id == class_def.id,
                )
            ).first()
        )
        if in_use:
            raise PreconditionFailed(
                f"Class '{class_def.name}' is still referenced and cannot be removed."
            )
        db.session.delete(class_def)

    # Park surviving rows on negative ordinals so the unique constraint
    # does not trip while they are renumbered.
    survivors = [c for key, c in existing.items() if key in wanted]
    for offset, class_def in enumerate(survivors, start=1):
        class_def.ordinal = -offset
    db.session.flush()

    loaded = []
    for ordinal, name in enumerate(names):
        class_def = existing.get(name.lower())
        if class_def is None:
            class_def = ClassDefinition(school_id=school_id, name=name)
            db.session.add(class_def)
        class_def.name = name
        class_def.ordinal = ordinal
        loaded.append(class_def)
    db.session.flush()

    current_app.logger.info(f"Loaded {len(loaded)} classes for school {school_id}")
    return loaded


def previous_class(school_id, class_id):
    """Return the class at ``ordinal - 1``, or None at the bottom of the catalog."""
    current = get_class(school_id, class_id)
    return ClassDefinition.query.filter_by(
        school_id=school_id, ordinal=current.ordinal - 1
    ).first()
