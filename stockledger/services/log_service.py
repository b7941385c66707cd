"""Scoped queries over the inventory ledger."""

import math
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from stockledger.actors import Actor
from stockledger.errors import LedgerValidationError
from stockledger.models.inventory_log import InventoryLog
from stockledger.models.product import Product
from stockledger.schemas.inventory import LogFilter
from stockledger.services.access_service import visible_products_query
from stockledger.timeutil import to_naive_utc

SORT_COLUMNS = {
    "created_at": InventoryLog.created_at,
    "action_type": InventoryLog.action_type,
    "quantity": InventoryLog.quantity,
}


@dataclass
class LogPage:
    items: list[InventoryLog]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass
class LogStats:
    total_logs: int
    increase_logs: int
    decrease_logs: int
    logs_by_date: list[tuple[date, int]]


def _scoped_conditions(actor: Actor, log_filter: LogFilter | None = None) -> list | None:
    visible = visible_products_query(actor)
    if visible is None:
        return None
    conditions = [InventoryLog.product_id.in_(visible)]
    if log_filter is None:
        return conditions

    if log_filter.product_id:
        conditions.append(InventoryLog.product_id == log_filter.product_id)
    if log_filter.category_id:
        conditions.append(
            InventoryLog.product_id.in_(select(Product.id).where(Product.category_id == log_filter.category_id))
        )
    if log_filter.action_type:
        conditions.append(InventoryLog.action_type == log_filter.action_type)
    if log_filter.actor_id:
        conditions.append(InventoryLog.actor_id == log_filter.actor_id)
    if log_filter.start_date:
        conditions.append(InventoryLog.created_at >= to_naive_utc(log_filter.start_date))
    if log_filter.end_date:
        conditions.append(InventoryLog.created_at <= to_naive_utc(log_filter.end_date))
    return conditions


def list_logs(db: Session, actor: Actor, log_filter: LogFilter | None = None) -> LogPage:
    log_filter = log_filter or LogFilter()
    conditions = _scoped_conditions(actor, log_filter)
    if conditions is None:
        return LogPage(items=[], page=log_filter.page, limit=log_filter.limit, total=0)

    total = db.scalar(select(func.count(InventoryLog.id)).where(*conditions))

    column = SORT_COLUMNS[log_filter.sort_by]
    ordering = column.asc() if log_filter.order == "asc" else column.desc()
    tie_break = InventoryLog.id.asc() if log_filter.order == "asc" else InventoryLog.id.desc()
    items = db.scalars(
        select(InventoryLog)
        .where(*conditions)
        .order_by(ordering, tie_break)
        .offset((log_filter.page - 1) * log_filter.limit)
        .limit(log_filter.limit)
    ).all()

    return LogPage(items=list(items), page=log_filter.page, limit=log_filter.limit, total=int(total))


def log_stats(db: Session, actor: Actor, start: datetime | None = None, end: datetime | None = None) -> LogStats:
    if start and end and to_naive_utc(start) > to_naive_utc(end):
        raise LedgerValidationError("start must not be after end", code="INVALID_DATE_RANGE")
    conditions = _scoped_conditions(actor, LogFilter(start_date=start, end_date=end))
    if conditions is None:
        return LogStats(total_logs=0, increase_logs=0, decrease_logs=0, logs_by_date=[])

    total, increases, decreases = db.execute(
        select(
            func.count(InventoryLog.id),
            func.coalesce(func.sum(case((InventoryLog.quantity > 0, 1), else_=0)), 0),
            func.coalesce(func.sum(case((InventoryLog.quantity < 0, 1), else_=0)), 0),
        ).where(*conditions)
    ).one()

    # Grouped in Python so the day boundary is the same on every backend
    by_date: dict[date, int] = {}
    for created_at in db.scalars(select(InventoryLog.created_at).where(*conditions)):
        day = created_at.date()
        by_date[day] = by_date.get(day, 0) + 1

    return LogStats(
        total_logs=int(total),
        increase_logs=int(increases),
        decrease_logs=int(decreases),
        logs_by_date=sorted(by_date.items()),
    )
