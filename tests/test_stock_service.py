"""Tests for stock mutations: ledger writes, status, errors and notifications."""

import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from stockledger.actors import ActorRole
from stockledger.errors import (
    ConflictError,
    ErrorKind,
    ForbiddenError,
    InsufficientStockError,
    InternalError,
    LedgerValidationError,
    NotFoundError,
)
from stockledger.models.inventory_log import ActionType, InventoryLog
from stockledger.models.product import Product, ProductStatus
from stockledger.services import ledger_service, stock_service
from stockledger.services.notification_service import STOCK_THRESHOLD_REACHED


def _entries(db, product_id) -> list[InventoryLog]:
    return list(
        db.scalars(
            select(InventoryLog).where(InventoryLog.product_id == product_id).order_by(InventoryLog.id)
        ).all()
    )


def _entry_count(db, product_id) -> int:
    return db.scalar(select(func.count(InventoryLog.id)).where(InventoryLog.product_id == product_id))


def test_create_product_records_opening_entry(db, admin, product) -> None:
    entries = _entries(db, product.id)

    assert len(entries) == 1
    assert entries[0].action_type == ActionType.INCREASE
    assert entries[0].quantity == 20
    assert entries[0].actor_role == ActorRole.ADMIN
    assert entries[0].actor_id == admin.id
    assert product.status == ProductStatus.GOOD


def test_decrease_crossing_threshold_flips_status_and_notifies(db, admin, product, notifier, clock) -> None:
    """Stock 20, threshold 10: removing 15 leaves 5, goes CRITICAL and emits one event."""
    mutation = stock_service.apply_delta(db, admin, product.id, -15, note="Damaged", clock=clock, notifier=notifier)

    assert mutation.previous_level == 20
    assert mutation.new_level == 5
    assert mutation.product.number_of_stocks == 5
    assert mutation.product.status == ProductStatus.CRITICAL
    assert mutation.threshold_crossed
    assert mutation.log_entry.quantity == -15
    assert mutation.log_entry.quantity_display == "-15"
    assert mutation.log_entry.action_type == ActionType.DECREASE
    assert mutation.log_entry.old_value == "20"
    assert mutation.log_entry.new_value == "5"
    assert mutation.log_entry.note == "Damaged"
    assert _entry_count(db, product.id) == 2

    assert len(notifier.events) == 1
    assert notifier.events[0].type == STOCK_THRESHOLD_REACHED
    assert notifier.events[0].product_id == product.id


def test_no_notification_when_already_critical(db, admin, make_product, notifier) -> None:
    low = make_product(number_of_stocks=8, threshold=10)

    mutation = stock_service.decrease_stock(db, admin, low.id, 3, notifier=notifier)

    assert mutation.product.status == ProductStatus.CRITICAL
    assert not mutation.threshold_crossed
    assert notifier.events == []


def test_increase_back_above_threshold_is_good(db, admin, make_product) -> None:
    low = make_product(number_of_stocks=10, threshold=10)
    assert low.status == ProductStatus.CRITICAL

    mutation = stock_service.increase_stock(db, admin, low.id, 1)

    assert mutation.product.status == ProductStatus.GOOD
    assert mutation.log_entry.quantity_display == "+1"


def test_decrease_beyond_stock_is_conflict_and_writes_nothing(db, admin, product) -> None:
    before = _entry_count(db, product.id)

    with pytest.raises(InsufficientStockError) as exc:
        stock_service.decrease_stock(db, admin, product.id, 21)

    assert exc.value.kind == ErrorKind.CONFLICT
    assert exc.value.code == "INSUFFICIENT_STOCK"
    assert exc.value.retryable
    db.expire_all()
    assert db.get(Product, product.id).number_of_stocks == 20
    assert _entry_count(db, product.id) == before


def test_decrease_to_exactly_zero_is_allowed(db, admin, product) -> None:
    mutation = stock_service.decrease_stock(db, admin, product.id, 20)
    assert mutation.new_level == 0
    assert mutation.product.status == ProductStatus.CRITICAL


@pytest.mark.parametrize("quantity", [0, -3, 2.5, "4", True, None])
def test_increase_rejects_non_positive_or_non_integer(db, admin, product, quantity) -> None:
    with pytest.raises(LedgerValidationError) as exc:
        stock_service.increase_stock(db, admin, product.id, quantity)
    assert exc.value.code == "INVALID_QUANTITY"
    assert not exc.value.retryable


def test_apply_delta_rejects_zero_and_mismatched_action(db, admin, product) -> None:
    with pytest.raises(LedgerValidationError):
        stock_service.apply_delta(db, admin, product.id, 0)
    with pytest.raises(LedgerValidationError):
        stock_service.apply_delta(db, admin, product.id, -2, action=ActionType.INCREASE)
    assert _entry_count(db, product.id) == 1


def test_unknown_product_is_not_found(db, admin) -> None:
    with pytest.raises(NotFoundError) as exc:
        stock_service.increase_stock(db, admin, "missing", 1)
    assert exc.value.code == "PRODUCT_NOT_FOUND"


def test_unassigned_staff_is_forbidden_and_nothing_changes(db, outsider_staff, assigned_product) -> None:
    with pytest.raises(ForbiddenError):
        stock_service.decrease_stock(db, outsider_staff, assigned_product.id, 5)

    db.expire_all()
    assert db.get(Product, assigned_product.id).number_of_stocks == 20
    assert _entry_count(db, assigned_product.id) == 1


def test_assigned_staff_mutation_is_attributed_to_staff(db, staff, assigned_product) -> None:
    mutation = stock_service.increase_stock(db, staff, assigned_product.id, 4, note="Delivery")

    assert mutation.log_entry.actor_role == ActorRole.STAFF
    assert mutation.log_entry.actor_id == staff.id


def test_set_stock_level_logs_signed_difference(db, admin, product) -> None:
    mutation = stock_service.set_stock_level(db, admin, product.id, 7, note="Recount")

    assert mutation.changed
    assert mutation.log_entry.action_type == ActionType.UPDATE_PRODUCT_NUMBER_OF_STOCKS
    assert mutation.log_entry.quantity == -13
    assert mutation.product.number_of_stocks == 7
    assert mutation.product.status == ProductStatus.CRITICAL


def test_set_stock_level_without_change_writes_no_entry(db, admin, product, notifier) -> None:
    mutation = stock_service.set_stock_level(db, admin, product.id, 20, notifier=notifier)

    assert not mutation.changed
    assert mutation.log_entry is None
    assert mutation.new_level == 20
    assert _entry_count(db, product.id) == 1
    assert notifier.events == []


def test_set_stock_level_rejects_negative(db, admin, product) -> None:
    with pytest.raises(LedgerValidationError):
        stock_service.set_stock_level(db, admin, product.id, -1)


def test_status_invariant_holds_after_every_mutation(db, admin, product) -> None:
    for delta in (-5, -5, -1, 3, -12, 30, -20):
        mutation = stock_service.apply_delta(db, admin, product.id, delta)
        p = mutation.product
        assert (p.status == ProductStatus.CRITICAL) == (p.number_of_stocks <= p.threshold)


def test_replay_matches_stock_after_mutations(db, admin, product, clock) -> None:
    deltas = [5, -3, -10, 8, -1]
    for delta in deltas:
        clock.advance(hours=1)
        stock_service.apply_delta(db, admin, product.id, delta, clock=clock)

    db.expire_all()
    stock = db.get(Product, product.id).number_of_stocks
    assert stock == 20 + sum(deltas)
    assert ledger_service.stock_at_date(db, product.id, clock.advance(seconds=1)) == stock
    assert ledger_service.verify_ledger(db, product.id).consistent


def test_entries_never_go_back_in_time(db, admin, product, clock) -> None:
    clock.advance(hours=5)
    first = stock_service.increase_stock(db, admin, product.id, 1, clock=clock)
    clock.advance(hours=-3)
    second = stock_service.increase_stock(db, admin, product.id, 1, clock=clock)

    assert second.log_entry.created_at >= first.log_entry.created_at
    assert second.log_entry.id > first.log_entry.id


def test_notifier_failure_does_not_undo_commit(db, admin, product, mocker) -> None:
    broken = mocker.Mock()
    broken.notify.side_effect = RuntimeError("sink down")

    mutation = stock_service.decrease_stock(db, admin, product.id, 15, notifier=broken)

    broken.notify.assert_called_once()
    db.expire_all()
    assert db.get(Product, product.id).number_of_stocks == 5
    assert mutation.changed


def test_store_failure_rolls_back_product_and_entry(db, admin, product, mocker) -> None:
    mocker.patch.object(stock_service, "next_entry_timestamp", side_effect=SQLAlchemyError("disk I/O error"))

    with pytest.raises(InternalError) as exc:
        stock_service.decrease_stock(db, admin, product.id, 5)

    assert exc.value.kind == ErrorKind.INTERNAL
    assert isinstance(exc.value.original_exception, SQLAlchemyError)
    db.expire_all()
    assert db.get(Product, product.id).number_of_stocks == 20
    assert _entry_count(db, product.id) == 1


def test_stale_version_is_retried_from_a_fresh_read(db, admin, product, mocker) -> None:
    real_apply = stock_service._apply_locked
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StaleDataError("version mismatch")
        return real_apply(*args, **kwargs)

    mocker.patch.object(stock_service, "_apply_locked", side_effect=flaky)

    mutation = stock_service.increase_stock(db, admin, product.id, 2)

    assert calls["n"] == 2
    assert mutation.new_level == 22
    assert _entry_count(db, product.id) == 2


def test_retries_give_up_as_internal_error(db, admin, product, mocker) -> None:
    mocker.patch.object(stock_service.settings, "MUTATION_MAX_ATTEMPTS", 3)
    mocker.patch.object(stock_service, "_apply_locked", side_effect=StaleDataError("always stale"))

    with pytest.raises(InternalError):
        stock_service.increase_stock(db, admin, product.id, 2)
    assert stock_service._apply_locked.call_count == 3


def test_mutation_sees_changes_committed_by_another_session(db, session_factory, admin, product) -> None:
    """A session holding a stale copy must not overwrite a concurrent commit."""
    assert db.get(Product, product.id).number_of_stocks == 20

    other = session_factory()
    try:
        stock_service.decrease_stock(other, admin, product.id, 6)
    finally:
        other.close()

    mutation = stock_service.increase_stock(db, admin, product.id, 1)
    assert mutation.previous_level == 14
    assert mutation.new_level == 15


def test_transfer_moves_stock_and_pairs_entries(db, admin, product, make_product) -> None:
    destination = make_product(number_of_stocks=3, threshold=1)

    transfer = stock_service.transfer_stock(db, admin, product.id, destination.id, 12, note="Rebalance")

    assert transfer.source.new_level == 8
    assert transfer.destination.new_level == 15
    assert transfer.source.log_entry.quantity == -12
    assert transfer.destination.log_entry.quantity == 12
    assert transfer.source.log_entry.action_type == ActionType.TRANSFER
    assert transfer.source.log_entry.reference_id == transfer.reference_id
    assert transfer.destination.log_entry.reference_id == transfer.reference_id
    assert transfer.source.new_level + transfer.destination.new_level == 20 + 3


def test_transfer_is_all_or_nothing(db, admin, product, make_product) -> None:
    destination = make_product(number_of_stocks=0, threshold=0)

    with pytest.raises(InsufficientStockError):
        stock_service.transfer_stock(db, admin, product.id, destination.id, 25)

    db.expire_all()
    assert db.get(Product, product.id).number_of_stocks == 20
    assert db.get(Product, destination.id).number_of_stocks == 0
    assert _entry_count(db, destination.id) == 0


def test_transfer_requires_access_to_both_products(db, staff, assigned_product, make_product) -> None:
    foreign = make_product()
    with pytest.raises(ForbiddenError):
        stock_service.transfer_stock(db, staff, assigned_product.id, foreign.id, 1)


def test_transfer_to_same_product_is_invalid(db, admin, product) -> None:
    with pytest.raises(LedgerValidationError):
        stock_service.transfer_stock(db, admin, product.id, product.id, 1)


def test_update_inventory_dispatches_actions(db, admin, product, make_product) -> None:
    other = make_product(number_of_stocks=0, threshold=0)

    added = stock_service.update_inventory(db, admin, product.id, 5, "ADD")
    assert added.log_entry.action_type == ActionType.ADD
    assert added.new_level == 25

    removed = stock_service.update_inventory(db, admin, product.id, 4, ActionType.REMOVE)
    assert removed.log_entry.action_type == ActionType.REMOVE
    assert removed.log_entry.quantity == -4

    moved = stock_service.update_inventory(db, admin, product.id, 1, "TRANSFER", to_product_id=other.id)
    assert moved.destination.new_level == 1

    with pytest.raises(LedgerValidationError):
        stock_service.update_inventory(db, admin, product.id, 1, "TRANSFER")
    with pytest.raises(LedgerValidationError):
        stock_service.update_inventory(db, admin, product.id, 1, "EXPLODE")


def test_log_entries_are_append_only(db, admin, product) -> None:
    entry = _entries(db, product.id)[0]

    entry.quantity = 999
    with pytest.raises(ConflictError):
        db.flush()
    db.rollback()

    entry = _entries(db, product.id)[0]
    db.delete(entry)
    with pytest.raises(ConflictError):
        db.flush()
    db.rollback()
    assert _entry_count(db, product.id) == 1


def test_concurrent_deltas_serialize(session_factory, admin, make_product, mocker) -> None:
    """+5 and -3 racing on stock 10 must land on exactly 12 with two new entries."""
    mocker.patch.object(stock_service.settings, "MUTATION_MAX_ATTEMPTS", 20)
    product_id = make_product(number_of_stocks=10, threshold=2).id
    barrier = threading.Barrier(2)
    errors = []

    def worker(delta: int) -> None:
        session = session_factory()
        try:
            barrier.wait()
            stock_service.apply_delta(session, admin, product_id, delta)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(delta,)) for delta in (5, -3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    check = session_factory()
    try:
        assert check.get(Product, product_id).number_of_stocks == 12
        assert _entry_count(check, product_id) == 3
        assert ledger_service.verify_ledger(check, product_id).consistent
    finally:
        check.close()
