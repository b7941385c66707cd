from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from stockledger.actors import Actor
from stockledger.api.auth import get_current_actor
from stockledger.api.products import get_notifier
from stockledger.database import get_db
from stockledger.errors import LedgerValidationError
from stockledger.models.inventory_log import ActionType
from stockledger.schemas.inventory import (
    DateCount,
    InventoryLogOut,
    InventoryUpdate,
    LogFilter,
    LogPageOut,
    LogStatsOut,
    TransferOut,
    TransferRequest,
    mutation_out,
    transfer_out,
)
from stockledger.services import log_service, stock_service
from stockledger.services.notification_service import BackgroundNotifier, Notifier
from stockledger.services.stock_service import StockTransfer

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/update")
def update_inventory(
    data: InventoryUpdate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    result = stock_service.update_inventory(
        db,
        actor,
        data.product_id,
        data.quantity,
        data.action,
        data.note,
        data.to_product_id,
        notifier=BackgroundNotifier(background_tasks, notifier),
    )
    if isinstance(result, StockTransfer):
        return transfer_out(result)
    return mutation_out(result)


@router.post("/transfer", response_model=TransferOut)
def transfer_stock(
    data: TransferRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    transfer = stock_service.transfer_stock(
        db,
        actor,
        data.from_product_id,
        data.to_product_id,
        data.quantity,
        data.note,
        notifier=BackgroundNotifier(background_tasks, notifier),
    )
    return transfer_out(transfer)


@router.get("/logs", response_model=LogPageOut)
def list_logs(
    product_id: str | None = None,
    category_id: str | None = None,
    action_type: ActionType | None = None,
    actor_id: str | None = None,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    order: str = "desc",
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        log_filter = LogFilter(
            product_id=product_id,
            category_id=category_id,
            action_type=action_type,
            actor_id=actor_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
            sort_by=sort_by,
            order=order,
        )
    except ValidationError as e:
        raise LedgerValidationError(f"Invalid log filter: {e.errors()[0]['msg']}", code="INVALID_FILTER") from e

    result = log_service.list_logs(db, actor, log_filter)
    return LogPageOut(
        items=[InventoryLogOut.model_validate(entry) for entry in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
    )


@router.get("/stats", response_model=LogStatsOut)
def log_stats(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    stats = log_service.log_stats(db, actor, start_date, end_date)
    return LogStatsOut(
        total_logs=stats.total_logs,
        increase_logs=stats.increase_logs,
        decrease_logs=stats.decrease_logs,
        logs_by_date=[DateCount(date=day, count=count) for day, count in stats.logs_by_date],
    )
