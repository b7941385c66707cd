import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.actors import Actor, ActorRole, AdminActor
from stockledger.config import settings
from stockledger.errors import ConflictError, ForbiddenError, LedgerValidationError, NotFoundError, product_not_found
from stockledger.models.category import Category
from stockledger.models.inventory_log import ActionType, InventoryLog
from stockledger.models.product import Product, status_for
from stockledger.models.snapshot import StockSnapshot
from stockledger.models.user import User
from stockledger.schemas.product import ProductCreate
from stockledger.services.access_service import require_access, visible_products_query
from stockledger.services.stock_service import next_entry_timestamp, run_serialized
from stockledger.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)


def _require_admin(actor: Actor) -> AdminActor:
    if not isinstance(actor, AdminActor):
        raise ForbiddenError("Admin only")
    return actor


def _owned_category(db: Session, admin: AdminActor, category_id: str) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found", code="CATEGORY_NOT_FOUND")
    if category.admin_id != admin.id:
        raise ForbiddenError(f"Category {category_id} belongs to another admin")
    return category


def _own_staff(db: Session, admin: AdminActor, staff_id: str) -> User:
    staff = db.get(User, staff_id)
    if not staff or staff.role != ActorRole.STAFF:
        raise NotFoundError(f"Staff {staff_id} not found", code="USER_NOT_FOUND")
    if staff.admin_id != admin.id:
        raise ForbiddenError(f"Staff {staff_id} belongs to another admin")
    return staff


# --- Categories ---

def create_category(db: Session, actor: Actor, name: str) -> Category:
    admin = _require_admin(actor)
    category = Category(name=name, admin_id=admin.id)
    db.add(category)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Category '{name}' already exists", code="ALREADY_EXISTS") from e
    db.refresh(category)
    return category


def assign_staff_to_category(db: Session, actor: Actor, category_id: str, staff_id: str) -> Category:
    admin = _require_admin(actor)
    category = _owned_category(db, admin, category_id)
    staff = _own_staff(db, admin, staff_id)
    if staff not in category.assignees:
        category.assignees.append(staff)
        db.commit()
    db.refresh(category)
    return category


# --- Products ---

def create_product(db: Session, actor: Actor, data: ProductCreate, clock: Clock = utcnow) -> Product:
    """Create a product; opening stock is recorded as the first ledger entry."""
    admin = _require_admin(actor)
    _owned_category(db, admin, data.category_id)

    threshold = data.threshold if data.threshold is not None else settings.DEFAULT_ALERT_THRESHOLD
    product = Product(
        sku=data.sku,
        name=data.name,
        category_id=data.category_id,
        price=data.price,
        number_of_stocks=data.number_of_stocks,
        threshold=threshold,
        status=status_for(data.number_of_stocks, threshold),
    )
    db.add(product)
    try:
        db.flush()
        if data.number_of_stocks > 0:
            db.add(
                InventoryLog(
                    product_id=product.id,
                    actor_role=admin.role,
                    actor_id=admin.id,
                    action_type=ActionType.INCREASE,
                    quantity=data.number_of_stocks,
                    note="Initial stock on product creation",
                    old_value="0",
                    new_value=str(data.number_of_stocks),
                    created_at=next_entry_timestamp(db, clock),
                )
            )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Product with SKU {data.sku} already exists", code="ALREADY_EXISTS") from e
    db.refresh(product)
    logger.info("Created product %s (%s) with %d in stock", product.id, product.sku, product.number_of_stocks)
    return product


def get_product(db: Session, actor: Actor, product_id: str) -> Product:
    return require_access(db, actor, product_id)


def list_visible_products(
    db: Session, actor: Actor, category_id: str | None = None, skip: int = 0, limit: int = 100
) -> list[Product]:
    visible = visible_products_query(actor)
    if visible is None:
        return []
    q = select(Product).where(Product.id.in_(visible))
    if category_id:
        q = q.where(Product.category_id == category_id)
    return list(db.scalars(q.order_by(Product.name, Product.id).offset(skip).limit(limit)).all())


def find_below_threshold(db: Session, scope_ids: set[str] | None = None) -> list[Product]:
    """Products whose stock is at or below their own threshold (column vs column)."""
    q = select(Product).where(Product.number_of_stocks <= Product.threshold)
    if scope_ids is not None:
        if not scope_ids:
            return []
        q = q.where(Product.id.in_(scope_ids))
    return list(db.scalars(q.order_by(Product.number_of_stocks, Product.name)).all())


def low_stock(db: Session, actor: Actor) -> list[Product]:
    visible = visible_products_query(actor)
    if visible is None:
        return []
    return list(
        db.scalars(
            select(Product)
            .where(Product.id.in_(visible), Product.number_of_stocks <= Product.threshold)
            .order_by(Product.number_of_stocks, Product.name)
        ).all()
    )


def update_threshold(db: Session, actor: Actor, product_id: str, threshold: int) -> Product:
    """Change the alert threshold and recompute status. Stock is untouched, so nothing is logged."""
    _require_admin(actor)
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise LedgerValidationError("threshold must be a non-negative integer", code="INVALID_THRESHOLD")

    def work() -> Product:
        product = db.scalar(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not product:
            raise product_not_found(product_id)
        require_access(db, actor, product_id)
        product.threshold = threshold
        product.refresh_status()
        db.flush()
        return product

    product = run_serialized(db, work, f"Threshold update on product {product_id}")
    db.refresh(product)
    return product


def assign_staff_to_product(db: Session, actor: Actor, product_id: str, staff_id: str) -> Product:
    admin = _require_admin(actor)
    product = require_access(db, admin, product_id)
    staff = _own_staff(db, admin, staff_id)
    if staff not in product.assignees:
        product.assignees.append(staff)
        db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, actor: Actor, product_id: str) -> None:
    """Delete a product with no ledger history. Audited products cannot be deleted."""
    admin = _require_admin(actor)
    product = require_access(db, admin, product_id)
    has_history = db.scalar(select(InventoryLog.id).where(InventoryLog.product_id == product_id).limit(1))
    if has_history is not None:
        raise ConflictError(
            f"Product {product_id} has inventory history and cannot be deleted",
            code="PRODUCT_HAS_HISTORY",
        )
    for snapshot in db.scalars(select(StockSnapshot).where(StockSnapshot.product_id == product_id)).all():
        db.delete(snapshot)
    db.delete(product)
    db.commit()
    logger.info("Deleted product %s", product_id)
