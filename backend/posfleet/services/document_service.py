# Overview: Human-readable document numbers backed by per-day sequences.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def _current_value(prefix: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix, period=period)
        .scalar()
    )


def next_document_number(prefix: str, *, on: date | None = None, pad: int = 4) -> str:
    """
    Atomically allocate the next number for `prefix` on the given day.

    Format: PREFIX-YYYYMMDD-NNNN (e.g. TO-20260301-0007). The counter is
    advanced with a single UPDATE so concurrent callers never share a
    number; the first allocation of a day inserts the row inside a
    savepoint and falls back to the UPDATE when another request won the
    insert.
    """
    period = (on or utcnow().date()).strftime("%Y%m%d")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.prefix == prefix, DocumentSequence.period == period)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    if db.session.execute(stmt).rowcount:
        next_num = _current_value(prefix, period) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(prefix=prefix, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            if not db.session.execute(stmt).rowcount:
                raise
            next_num = _current_value(prefix, period) - 1

    return f"{prefix}-{period}-{next_num:0{pad}d}"
