"""Stock mutations.

Every change to ``Product.number_of_stocks`` goes through this module. Each
mutation re-reads the product under a row lock, updates stock and status and
appends exactly one ledger entry, all in a single transaction. Concurrent
writers are serialized by the row lock where the store supports it and by the
product's version counter everywhere else; a losing writer rolls back and
retries from a fresh read.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.actors import Actor
from stockledger.config import settings
from stockledger.errors import (
    ForbiddenError,
    InsufficientStockError,
    InternalError,
    LedgerError,
    LedgerValidationError,
    product_not_found,
)
from stockledger.models.inventory_log import DECREASE_ACTIONS, INCREASE_ACTIONS, ActionType, InventoryLog
from stockledger.models.product import Product, ProductStatus
from stockledger.services.access_service import can_access
from stockledger.services.notification_service import Notifier, ThresholdEvent, dispatch
from stockledger.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StockMutation:
    product: Product
    log_entry: InventoryLog | None
    previous_level: int
    new_level: int
    threshold_crossed: bool = False

    @property
    def changed(self) -> bool:
        return self.log_entry is not None


@dataclass
class StockTransfer:
    source: StockMutation
    destination: StockMutation
    reference_id: str


# --- Validation ---

def _require_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise LedgerValidationError(f"{field} must be an integer", code="INVALID_QUANTITY")
    return value


def _require_positive(quantity, field: str = "quantity") -> int:
    _require_int(quantity, field)
    if quantity <= 0:
        raise LedgerValidationError(f"{field} must be a positive integer", code="INVALID_QUANTITY")
    return quantity


def _check_direction(action: ActionType, delta: int) -> None:
    if action in INCREASE_ACTIONS and delta < 0:
        raise LedgerValidationError(f"{action.value} requires a positive quantity", code="INVALID_QUANTITY")
    if action in DECREASE_ACTIONS and delta > 0:
        raise LedgerValidationError(f"{action.value} requires a negative quantity", code="INVALID_QUANTITY")


# --- Transaction plumbing ---

def run_serialized(db: Session, work: Callable[[], T], description: str) -> T:
    """Run ``work`` and commit, retrying on version conflicts and busy-store errors."""
    attempts = max(1, settings.MUTATION_MAX_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except LedgerError:
            db.rollback()
            raise
        except (StaleDataError, OperationalError) as e:
            db.rollback()
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, e)
                raise InternalError(f"{description} failed: store busy", original_exception=e) from e
            logger.warning("%s conflicted (attempt %d/%d), retrying: %s", description, attempt, attempts, e)
            time.sleep(settings.MUTATION_RETRY_BACKOFF_SECONDS * attempt)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("%s failed: %s", description, e)
            raise InternalError(f"{description} failed", original_exception=e) from e
    raise InternalError(f"{description} failed")


def _lock_product(db: Session, actor: Actor, product_id: str) -> Product:
    product = db.scalar(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not product:
        raise product_not_found(product_id)
    if not can_access(db, actor, product):
        raise ForbiddenError(f"Not allowed to change stock of product {product_id}")
    return product


def next_entry_timestamp(db: Session, clock: Clock):
    # Entries never go back in time relative to the rest of the ledger
    now = clock()
    latest = db.scalar(select(func.max(InventoryLog.created_at)))
    if latest is not None and latest > now:
        return latest
    return now


def _apply_locked(
    db: Session,
    actor: Actor,
    product: Product,
    delta: int,
    action: ActionType,
    note: str | None,
    clock: Clock,
    reference_id: str | None = None,
) -> StockMutation:
    previous = product.number_of_stocks
    new_level = previous + delta
    if new_level < 0:
        raise InsufficientStockError(previous, delta)
    if delta == 0:
        return StockMutation(product=product, log_entry=None, previous_level=previous, new_level=previous)

    previous_status = product.status
    product.number_of_stocks = new_level
    product.refresh_status()
    db.flush()

    entry = InventoryLog(
        product_id=product.id,
        actor_role=actor.role,
        actor_id=actor.id,
        action_type=action,
        quantity=delta,
        note=note,
        old_value=str(previous),
        new_value=str(new_level),
        reference_id=reference_id,
        created_at=next_entry_timestamp(db, clock),
    )
    db.add(entry)
    db.flush()

    crossed = previous_status == ProductStatus.GOOD and product.status == ProductStatus.CRITICAL
    return StockMutation(
        product=product,
        log_entry=entry,
        previous_level=previous,
        new_level=new_level,
        threshold_crossed=crossed,
    )


def _after_commit(mutation: StockMutation, notifier: Notifier | None) -> None:
    if not mutation.changed:
        return
    entry = mutation.log_entry
    logger.info(
        "Product %s stock %d -> %d (%s %s by %s %s)",
        mutation.product.id,
        mutation.previous_level,
        mutation.new_level,
        entry.action_type.value,
        entry.quantity_display,
        entry.actor_role.value,
        entry.actor_id,
    )
    if mutation.threshold_crossed:
        product = mutation.product
        dispatch(
            notifier,
            ThresholdEvent(
                product_id=product.id,
                message=(
                    f"Product '{product.name}' stock is {product.number_of_stocks}, "
                    f"at or below threshold {product.threshold}"
                ),
            ),
        )


# --- Entry points ---

def apply_delta(
    db: Session,
    actor: Actor,
    product_id: str,
    delta: int,
    note: str | None = None,
    action: ActionType | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockMutation:
    """Apply a signed, non-zero ``delta`` to a product's stock."""
    _require_int(delta, "delta")
    if delta == 0:
        raise LedgerValidationError("delta must be non-zero", code="INVALID_QUANTITY")
    if action is None:
        action = ActionType.INCREASE if delta > 0 else ActionType.DECREASE
    _check_direction(action, delta)

    mutation = run_serialized(
        db,
        lambda: _apply_locked(db, actor, _lock_product(db, actor, product_id), delta, action, note, clock),
        f"Stock change on product {product_id}",
    )
    _after_commit(mutation, notifier)
    return mutation


def increase_stock(
    db: Session,
    actor: Actor,
    product_id: str,
    quantity: int,
    note: str | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockMutation:
    _require_positive(quantity)
    return apply_delta(db, actor, product_id, quantity, note, ActionType.INCREASE, clock=clock, notifier=notifier)


def decrease_stock(
    db: Session,
    actor: Actor,
    product_id: str,
    quantity: int,
    note: str | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockMutation:
    _require_positive(quantity)
    return apply_delta(db, actor, product_id, -quantity, note, ActionType.DECREASE, clock=clock, notifier=notifier)


def set_stock_level(
    db: Session,
    actor: Actor,
    product_id: str,
    new_level: int,
    note: str | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockMutation:
    """Set stock to an absolute level. A no-op change writes no ledger entry."""
    _require_int(new_level, "number_of_stocks")
    if new_level < 0:
        raise LedgerValidationError("number_of_stocks must not be negative", code="INVALID_QUANTITY")

    def work() -> StockMutation:
        product = _lock_product(db, actor, product_id)
        delta = new_level - product.number_of_stocks
        return _apply_locked(
            db, actor, product, delta, ActionType.UPDATE_PRODUCT_NUMBER_OF_STOCKS, note, clock
        )

    mutation = run_serialized(db, work, f"Stock level update on product {product_id}")
    if not mutation.changed:
        logger.info("Product %s already at %d; no ledger entry written", product_id, new_level)
    _after_commit(mutation, notifier)
    return mutation


def transfer_stock(
    db: Session,
    actor: Actor,
    from_product_id: str,
    to_product_id: str,
    quantity: int,
    note: str | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockTransfer:
    """Move ``quantity`` units between two products as a pair of TRANSFER entries."""
    _require_positive(quantity)
    if from_product_id == to_product_id:
        raise LedgerValidationError("Cannot transfer stock to the same product", code="INVALID_TRANSFER")

    reference_id = str(uuid.uuid4())

    def work() -> StockTransfer:
        # Lock in a fixed order so two opposite transfers cannot deadlock
        locked = {pid: _lock_product(db, actor, pid) for pid in sorted((from_product_id, to_product_id))}
        source = _apply_locked(
            db, actor, locked[from_product_id], -quantity, ActionType.TRANSFER, note, clock, reference_id
        )
        destination = _apply_locked(
            db, actor, locked[to_product_id], quantity, ActionType.TRANSFER, note, clock, reference_id
        )
        return StockTransfer(source=source, destination=destination, reference_id=reference_id)

    transfer = run_serialized(db, work, f"Stock transfer {from_product_id} -> {to_product_id}")
    _after_commit(transfer.source, notifier)
    _after_commit(transfer.destination, notifier)
    return transfer


def update_inventory(
    db: Session,
    actor: Actor,
    product_id: str,
    quantity: int,
    action: ActionType | str,
    note: str | None = None,
    to_product_id: str | None = None,
    *,
    clock: Clock = utcnow,
    notifier: Notifier | None = None,
) -> StockMutation | StockTransfer:
    """Action-based entry point: ADD, REMOVE or TRANSFER a positive quantity."""
    try:
        action = ActionType(action)
    except ValueError as e:
        raise LedgerValidationError(f"Unknown action {action!r}", code="INVALID_ACTION") from e
    _require_positive(quantity)

    if action == ActionType.ADD:
        return apply_delta(db, actor, product_id, quantity, note, action, clock=clock, notifier=notifier)
    if action == ActionType.REMOVE:
        return apply_delta(db, actor, product_id, -quantity, note, action, clock=clock, notifier=notifier)
    if action == ActionType.TRANSFER:
        if not to_product_id:
            raise LedgerValidationError("TRANSFER requires a destination product", code="INVALID_TRANSFER")
        return transfer_stock(
            db, actor, product_id, to_product_id, quantity, note, clock=clock, notifier=notifier
        )
    raise LedgerValidationError(f"Action {action.value} is not supported here", code="INVALID_ACTION")
