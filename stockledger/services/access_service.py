"""Access scoping: which products an actor may read or mutate.

The predicates never raise; ``require_access`` is the fail-fast wrapper the
mutators and read endpoints use.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.actors import Actor, AdminActor, StaffActor
from stockledger.config import settings
from stockledger.errors import ForbiddenError, product_not_found
from stockledger.models.category import Category, category_assignees
from stockledger.models.product import Product, product_assignees


def _staff_scope(scope: str | None) -> str:
    return (scope or settings.STAFF_SCOPE).lower()


def can_access(db: Session, actor: Actor | None, product: Product, scope: str | None = None) -> bool:
    if isinstance(actor, AdminActor):
        return product.category is not None and product.category.admin_id == actor.id
    if isinstance(actor, StaffActor):
        mode = _staff_scope(scope)
        by_product = any(s.id == actor.id for s in product.assignees)
        by_category = product.category is not None and any(s.id == actor.id for s in product.category.assignees)
        if mode == "product":
            return by_product
        if mode == "category":
            return by_category
        if mode == "either":
            return by_product or by_category
    return False


def visible_products_query(actor: Actor | None, scope: str | None = None):
    """SELECT of product ids visible to ``actor``; None when nothing is visible."""
    if isinstance(actor, AdminActor):
        return select(Product.id).join(Category, Product.category_id == Category.id).where(
            Category.admin_id == actor.id
        )
    if isinstance(actor, StaffActor):
        mode = _staff_scope(scope)
        by_product = select(product_assignees.c.product_id).where(product_assignees.c.staff_id == actor.id)
        by_category = (
            select(Product.id)
            .join(category_assignees, category_assignees.c.category_id == Product.category_id)
            .where(category_assignees.c.staff_id == actor.id)
        )
        if mode == "product":
            return by_product
        if mode == "category":
            return by_category
        if mode == "either":
            return by_product.union(by_category)
    return None


def visible_product_ids(db: Session, actor: Actor | None, scope: str | None = None) -> set[str]:
    query = visible_products_query(actor, scope)
    if query is None:
        return set()
    return set(db.scalars(query).all())


def require_access(db: Session, actor: Actor | None, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise product_not_found(product_id)
    if not can_access(db, actor, product):
        raise ForbiddenError(f"Not allowed to access product {product_id}")
    return product
