from __future__ import annotations

import logging
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

log = logging.getLogger(__name__)


def flush(db: Session) -> None:
    """Flush, unless a flush is already in progress."""
    if not db._flushing:
        db.flush()


def create[T](db: Session, model: type[T], **kwargs: Any) -> tuple[T, Literal[True]]:
    """Add a new `model` row and flush so it has a primary key."""
    created = model(**kwargs)
    db.add(created)
    flush(db)
    return created, True


def get_one[T](db: Session, model: type[T], **kwargs: Any) -> T | None:
    """The single `model` row matching `kwargs`, or None.

    :raise MultipleResultsFound: If more than one row matches.
    """
    return db.execute(select(model).filter_by(**kwargs)).scalar_one_or_none()


def get_one_or_create[T](
    db: Session, model: type[T], **kwargs: Any
) -> tuple[T, bool]:
    """Find the `model` row matching `kwargs`, creating it if needed.

    Creation happens in a savepoint. If a concurrent transaction inserted
    the same row first, the unique constraint fails and we load theirs.
    """
    if (existing := get_one(db, model, **kwargs)) is not None:
        return existing, False

    savepoint = db.begin_nested()
    try:
        created = create(db, model, **kwargs)
    except IntegrityError as e:
        log.info(f"Lost race creating {model.__name__} {kwargs!r}: {e}")
        savepoint.rollback()
        return db.execute(select(model).filter_by(**kwargs)).scalar_one(), False
    savepoint.commit()
    return created


def expire_attributes(db: Session, model: type[Any], ident: int, *attrs: str) -> None:
    """Expire attributes of an already-loaded instance after a bulk UPDATE
    changed its row behind the ORM's back. Instances that aren't loaded in
    this session are left alone.
    """
    instance = db.identity_map.get(identity_key(model, ident))
    if instance is not None:
        db.expire(instance, list(attrs) or None)
