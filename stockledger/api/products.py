from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from stockledger.actors import Actor, AdminActor
from stockledger.api.auth import get_admin_actor, get_current_actor
from stockledger.database import get_db
from stockledger.schemas.inventory import MutationOut, StockChange, StockDelta, StockLevelSet, mutation_out
from stockledger.schemas.product import AssignStaff, ProductCreate, ProductOut, ThresholdUpdate
from stockledger.services import product_service, stock_service
from stockledger.services.notification_service import BackgroundNotifier, Notifier, build_notifier

router = APIRouter(prefix="/products", tags=["Products"])


def get_notifier() -> Notifier:
    return build_notifier()


def _deferred(background_tasks: BackgroundTasks, notifier: Notifier) -> Notifier:
    return BackgroundNotifier(background_tasks, notifier)


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, admin: AdminActor = Depends(get_admin_actor), db: Session = Depends(get_db)):
    return product_service.create_product(db, admin, data)


@router.get("", response_model=list[ProductOut])
def list_products(
    skip: int = 0,
    limit: int = 100,
    category_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return product_service.list_visible_products(db, actor, category_id=category_id, skip=skip, limit=limit)


@router.get("/low-stock", response_model=list[ProductOut])
def low_stock(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return product_service.low_stock(db, actor)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return product_service.get_product(db, actor, product_id)


@router.patch("/{product_id}/threshold", response_model=ProductOut)
def update_threshold(
    product_id: str,
    data: ThresholdUpdate,
    admin: AdminActor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
):
    return product_service.update_threshold(db, admin, product_id, data.threshold)


@router.post("/{product_id}/assignees", response_model=ProductOut)
def assign_staff(
    product_id: str,
    data: AssignStaff,
    admin: AdminActor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
):
    return product_service.assign_staff_to_product(db, admin, product_id, data.staff_id)


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: str, admin: AdminActor = Depends(get_admin_actor), db: Session = Depends(get_db)):
    product_service.delete_product(db, admin, product_id)


# --- Stock mutations ---

@router.post("/{product_id}/stock/increase", response_model=MutationOut)
def increase_stock(
    product_id: str,
    data: StockChange,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    mutation = stock_service.increase_stock(
        db, actor, product_id, data.quantity, data.note, notifier=_deferred(background_tasks, notifier)
    )
    return mutation_out(mutation)


@router.post("/{product_id}/stock/decrease", response_model=MutationOut)
def decrease_stock(
    product_id: str,
    data: StockChange,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    mutation = stock_service.decrease_stock(
        db, actor, product_id, data.quantity, data.note, notifier=_deferred(background_tasks, notifier)
    )
    return mutation_out(mutation)


@router.post("/{product_id}/stock/delta", response_model=MutationOut)
def apply_delta(
    product_id: str,
    data: StockDelta,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    mutation = stock_service.apply_delta(
        db, actor, product_id, data.delta, data.note, notifier=_deferred(background_tasks, notifier)
    )
    return mutation_out(mutation)


@router.put("/{product_id}/stock", response_model=MutationOut)
def set_stock_level(
    product_id: str,
    data: StockLevelSet,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    mutation = stock_service.set_stock_level(
        db, actor, product_id, data.number_of_stocks, data.note, notifier=_deferred(background_tasks, notifier)
    )
    return mutation_out(mutation)
