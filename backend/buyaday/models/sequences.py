from __future__ import annotations

from ..extensions import db


class OrderSequence(db.Model):
    """
    Named monotonically increasing counter.

    Incremented with a single UPDATE inside the sale transaction, so numbers
    are never reused and a rolled-back sale returns its number.
    """
    __tablename__ = "order_sequences"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
