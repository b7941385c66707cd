"""Read-side replay of the inventory ledger.

Historical stock levels are derived by folding signed log quantities in
(created_at, id) order. Snapshots only shorten the fold; dropping every
snapshot must never change an answer.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockledger.errors import InternalError, LedgerValidationError, product_not_found
from stockledger.models.inventory_log import InventoryLog
from stockledger.models.product import Product
from stockledger.models.snapshot import StockSnapshot
from stockledger.timeutil import Clock, days_between, start_of_day, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class DailyBalance:
    day: date
    closing_stock: int


@dataclass
class LedgerCheck:
    product_id: str
    recorded_stock: int
    replayed_stock: int
    entry_count: int

    @property
    def consistent(self) -> bool:
        return self.recorded_stock == self.replayed_stock


def _get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise product_not_found(product_id)
    return product


def _validate_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = to_naive_utc(start), to_naive_utc(end)
    if start > end:
        raise LedgerValidationError("start must not be after end", code="INVALID_DATE_RANGE")
    return start, end


def _latest_snapshot(db: Session, product_id: str, cutoff: datetime, inclusive: bool) -> StockSnapshot | None:
    covered = StockSnapshot.last_entry_at <= cutoff if inclusive else StockSnapshot.last_entry_at < cutoff
    return db.scalar(
        select(StockSnapshot)
        .where(StockSnapshot.product_id == product_id, or_(StockSnapshot.last_entry_at.is_(None), covered))
        .order_by(StockSnapshot.last_entry_id.desc(), StockSnapshot.id.desc())
        .limit(1)
    )


def _balance_at(db: Session, product_id: str, cutoff: datetime, inclusive: bool = True) -> int:
    snapshot = _latest_snapshot(db, product_id, cutoff, inclusive)
    base, after_id = (snapshot.quantity, snapshot.last_entry_id) if snapshot else (0, 0)
    in_range = InventoryLog.created_at <= cutoff if inclusive else InventoryLog.created_at < cutoff
    total = db.scalar(
        select(func.coalesce(func.sum(InventoryLog.quantity), 0)).where(
            InventoryLog.product_id == product_id,
            InventoryLog.id > after_id,
            in_range,
        )
    )
    return base + int(total)


def earliest_entry(db: Session, product_id: str) -> InventoryLog | None:
    return db.scalar(
        select(InventoryLog)
        .where(InventoryLog.product_id == product_id)
        .order_by(InventoryLog.created_at.asc(), InventoryLog.id.asc())
        .limit(1)
    )


def stock_at_date(db: Session, product_id: str, as_of: datetime) -> int:
    """Stock level implied by every entry created at or before ``as_of``."""
    _get_product(db, product_id)
    return _balance_at(db, product_id, to_naive_utc(as_of))


def stock_history(db: Session, product_id: str, start: datetime, end: datetime) -> list[DailyBalance]:
    """Closing balance for each calendar day in [start, end]; the last day closes at ``end``."""
    _get_product(db, product_id)
    start, end = _validate_range(start, end)

    first_day = start_of_day(start.date())
    balance = _balance_at(db, product_id, first_day, inclusive=False)

    rows = db.execute(
        select(InventoryLog.created_at, InventoryLog.quantity)
        .where(
            InventoryLog.product_id == product_id,
            InventoryLog.created_at >= first_day,
            InventoryLog.created_at <= end,
        )
        .order_by(InventoryLog.created_at.asc(), InventoryLog.id.asc())
    ).all()

    per_day: dict[date, int] = defaultdict(int)
    for created_at, quantity in rows:
        per_day[created_at.date()] += quantity

    history = []
    for day in days_between(start.date(), end.date()):
        balance += per_day.get(day, 0)
        history.append(DailyBalance(day=day, closing_stock=balance))
    return history


def average_stock(db: Session, product_id: str, start: datetime, end: datetime) -> float:
    """Mean of the per-day closing balances over [start, end]."""
    history = stock_history(db, product_id, start, end)
    return sum(d.closing_stock for d in history) / len(history)


def baseline_stock(db: Session, product_id: str) -> int:
    """First recorded opening stock: the earliest entry's quantity if it added stock, else 0."""
    _get_product(db, product_id)
    entry = earliest_entry(db, product_id)
    if entry is None or not entry.increases_stock:
        return 0
    return entry.quantity


def verify_ledger(db: Session, product_id: str) -> LedgerCheck:
    """Replay the full ledger (ignoring snapshots) and compare with the stored stock level."""
    product = _get_product(db, product_id)
    total, count = db.execute(
        select(func.coalesce(func.sum(InventoryLog.quantity), 0), func.count(InventoryLog.id)).where(
            InventoryLog.product_id == product_id
        )
    ).one()
    check = LedgerCheck(
        product_id=product_id,
        recorded_stock=product.number_of_stocks,
        replayed_stock=int(total),
        entry_count=int(count),
    )
    if not check.consistent:
        logger.warning(
            "Ledger mismatch for product %s: recorded %d, replayed %d",
            product_id,
            check.recorded_stock,
            check.replayed_stock,
        )
    return check


# --- Snapshots ---

def take_snapshot(db: Session, product_id: str, clock: Clock = utcnow) -> StockSnapshot:
    product = _get_product(db, product_id)
    previous = db.scalar(
        select(StockSnapshot)
        .where(StockSnapshot.product_id == product_id)
        .order_by(StockSnapshot.last_entry_id.desc(), StockSnapshot.id.desc())
        .limit(1)
    )
    base = previous.quantity if previous else 0
    after_id = previous.last_entry_id if previous else 0

    total, last_id, last_at = db.execute(
        select(
            func.coalesce(func.sum(InventoryLog.quantity), 0),
            func.max(InventoryLog.id),
            func.max(InventoryLog.created_at),
        ).where(InventoryLog.product_id == product_id, InventoryLog.id > after_id)
    ).one()

    if last_id is None:
        last_id, last_at = after_id, previous.last_entry_at if previous else None

    quantity = base + int(total)
    snapshot = StockSnapshot(
        product_id=product_id,
        quantity=quantity,
        value=round(quantity * (product.price or 0.0), 2),
        last_entry_id=last_id,
        last_entry_at=last_at,
        taken_at=clock(),
    )
    db.add(snapshot)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError(f"Snapshot of product {product_id} failed", original_exception=e) from e
    db.refresh(snapshot)
    return snapshot


def take_snapshots(db: Session, clock: Clock = utcnow, product_ids: set[str] | None = None) -> int:
    """Snapshot every product (or the given ids); returns how many snapshots were written."""
    ids = product_ids if product_ids is not None else set(db.scalars(select(Product.id)).all())
    for product_id in sorted(ids):
        take_snapshot(db, product_id, clock)
    logger.info("Took %d stock snapshots", len(ids))
    return len(ids)
