from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.actors import AdminActor
from stockledger.api.auth import get_admin_actor
from stockledger.database import get_db
from stockledger.schemas.product import AssignStaff, CategoryCreate, CategoryOut
from stockledger.services import product_service

router = APIRouter(prefix="/categories", tags=["Categories"])


@router.post("", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryCreate, admin: AdminActor = Depends(get_admin_actor), db: Session = Depends(get_db)):
    return product_service.create_category(db, admin, data.name)


@router.post("/{category_id}/assignees", response_model=CategoryOut)
def assign_staff(
    category_id: str,
    data: AssignStaff,
    admin: AdminActor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
):
    return product_service.assign_staff_to_category(db, admin, category_id, data.staff_id)
