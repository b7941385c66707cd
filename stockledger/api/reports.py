from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.actors import Actor, AdminActor
from stockledger.api.auth import get_admin_actor, get_current_actor
from stockledger.database import get_db
from stockledger.schemas.inventory import DailyBalanceOut, LedgerCheckOut, VarianceOut, VarianceReportOut
from stockledger.services import ledger_service, variance_service
from stockledger.services.access_service import require_access, visible_product_ids
from stockledger.services.variance_service import ComparisonType
from stockledger.timeutil import utcnow

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/products/{product_id}/stock-at")
def stock_at_date(
    product_id: str,
    as_of: datetime | None = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_access(db, actor, product_id)
    as_of = as_of or utcnow()
    return {"product_id": product_id, "as_of": as_of, "stock": ledger_service.stock_at_date(db, product_id, as_of)}


@router.get("/products/{product_id}/average")
def average_stock(
    product_id: str,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_access(db, actor, product_id)
    return {
        "product_id": product_id,
        "start_date": start_date,
        "end_date": end_date,
        "average_stock": ledger_service.average_stock(db, product_id, start_date, end_date),
    }


@router.get("/products/{product_id}/baseline")
def baseline_stock(product_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    require_access(db, actor, product_id)
    return {"product_id": product_id, "baseline_stock": ledger_service.baseline_stock(db, product_id)}


@router.get("/products/{product_id}/history", response_model=list[DailyBalanceOut])
def stock_history(
    product_id: str,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_access(db, actor, product_id)
    return ledger_service.stock_history(db, product_id, start_date, end_date)


@router.get("/products/{product_id}/verify", response_model=LedgerCheckOut)
def verify_ledger(product_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    require_access(db, actor, product_id)
    check = ledger_service.verify_ledger(db, product_id)
    return LedgerCheckOut(
        product_id=check.product_id,
        recorded_stock=check.recorded_stock,
        replayed_stock=check.replayed_stock,
        entry_count=check.entry_count,
        consistent=check.consistent,
    )


@router.post("/snapshots")
def take_snapshots(admin: AdminActor = Depends(get_admin_actor), db: Session = Depends(get_db)):
    count = ledger_service.take_snapshots(db, product_ids=visible_product_ids(db, admin))
    return {"snapshots": count}


@router.get("/variance", response_model=VarianceReportOut)
def variance_report(
    target_date: datetime | None = Query(None),
    comparison_type: ComparisonType = ComparisonType.PREVIOUS,
    category_id: str | None = None,
    product_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return variance_service.compute_variance_batch(
        db, actor, target_date, comparison_type, category_id=category_id, product_id=product_id
    )


@router.get("/variance/{product_id}", response_model=VarianceOut)
def product_variance(
    product_id: str,
    target_date: datetime | None = Query(None),
    comparison_type: ComparisonType = ComparisonType.PREVIOUS,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    require_access(db, actor, product_id)
    return variance_service.compute_variance(db, product_id, target_date, comparison_type)
