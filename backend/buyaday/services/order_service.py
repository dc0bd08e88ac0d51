# Overview: Atomic order reference allocation.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import OrderSequence


def sequence_name(calendar_year: int) -> str:
    return f"order:{calendar_year}"


def format_order_ref(prefix: str, calendar_year: int, number: int) -> str:
    return f"{prefix}-{calendar_year}-{number:05d}"


def ensure_order_sequence(calendar_year: int) -> OrderSequence:
    """Create the counter row for a year if missing (provisioning)."""
    name = sequence_name(calendar_year)
    seq = db.session.query(OrderSequence).filter_by(name=name).first()
    if not seq:
        seq = OrderSequence(name=name, next_number=1)
        db.session.add(seq)
        db.session.flush()
    return seq


def next_order_ref(calendar_year: int) -> str:
    """
    Allocate the next order reference for a calendar year.

    Must be called inside the sale transaction. The increment is a single
    UPDATE so concurrent sales serialize on the counter row and never share a
    number. Falls back to inserting the row on first use; a concurrent insert
    surfaces as IntegrityError, which run_with_retry handles.
    """
    name = sequence_name(calendar_year)
    prefix = current_app.config["ORDER_PREFIX"]

    stmt = (
        update(OrderSequence)
        .where(OrderSequence.name == name)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        number = db.session.query(OrderSequence.next_number).filter_by(name=name).scalar() - 1
        return format_order_ref(prefix, calendar_year, number)

    db.session.add(OrderSequence(name=name, next_number=2))
    db.session.flush()
    return format_order_ref(prefix, calendar_year, 1)
