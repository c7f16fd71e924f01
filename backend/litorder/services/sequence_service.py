# Overview: Atomic allocation of human-readable order numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import OrderSequence
from ..time_utils import utcnow


ORDER_NUMBER_PREFIX = "ORD"


def order_number_prefix(now=None) -> str:
    now = now or utcnow()
    return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}"


def next_order_number(*, pad: int = 4, now=None) -> str:
    """
    Allocate the next order number for today: ORD-YYYYMMDD-NNNN.

    Must run inside a unit of work. The increment is a single UPDATE so two
    writers serialize on the sequence row. When two writers race to create
    the day's first row, the loser raises StaleDataError so that
    run_in_unit_of_work retries it against the row the winner created.
    """
    prefix = order_number_prefix(now)

    stmt = (
        update(OrderSequence)
        .where(OrderSequence.prefix == prefix)
        .values(next_number=OrderSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(prefix=prefix)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = OrderSequence(prefix=prefix, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise StaleDataError(f"order sequence {prefix} created concurrently") from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
