"""Stock variance: compare stock at a target date with a reference value."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum as PyEnum

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.actors import Actor
from stockledger.config import settings
from stockledger.errors import LedgerValidationError, product_not_found
from stockledger.models.product import Product
from stockledger.services import ledger_service
from stockledger.services.access_service import visible_products_query
from stockledger.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class ComparisonType(str, PyEnum):
    PREVIOUS = "previous"
    AVERAGE = "average"
    BASELINE = "baseline"


class VarianceType(str, PyEnum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    NO_CHANGE = "NO_CHANGE"


@dataclass
class VarianceResult:
    product_id: str
    product_name: str
    category_name: str
    current_stock: int
    stock_at_target: int
    comparison_value: float
    comparison_date: datetime | None
    variance: float
    variance_percentage: float
    variance_type: VarianceType
    target_date: datetime
    comparison_type: ComparisonType


@dataclass
class VarianceSummary:
    total_products: int = 0
    increased_products: int = 0
    decreased_products: int = 0
    unchanged_products: int = 0
    average_variance: float = 0.0


@dataclass
class VarianceReport:
    results: list[VarianceResult] = field(default_factory=list)
    summary: VarianceSummary = field(default_factory=VarianceSummary)


def parse_comparison_type(value: ComparisonType | str) -> ComparisonType:
    try:
        return ComparisonType(value)
    except ValueError as e:
        raise LedgerValidationError(
            f"comparison_type must be one of {[c.value for c in ComparisonType]}",
            code="INVALID_COMPARISON_TYPE",
        ) from e


def variance_type_for(variance: float) -> VarianceType:
    if variance > 0:
        return VarianceType.INCREASE
    if variance < 0:
        return VarianceType.DECREASE
    return VarianceType.NO_CHANGE


def variance_percentage(variance: float, comparison_value: float) -> float:
    if comparison_value == 0:
        return 0.0
    return round(variance / comparison_value * 100, 2)


def _comparison(
    db: Session, product_id: str, target: datetime, comparison_type: ComparisonType
) -> tuple[float, datetime | None]:
    if comparison_type == ComparisonType.PREVIOUS:
        previous_day = target - timedelta(days=1)
        return ledger_service.stock_at_date(db, product_id, previous_day), previous_day
    if comparison_type == ComparisonType.AVERAGE:
        window_start = target - timedelta(days=settings.AVERAGE_WINDOW_DAYS)
        return ledger_service.average_stock(db, product_id, window_start, target), window_start
    first = ledger_service.earliest_entry(db, product_id)
    return ledger_service.baseline_stock(db, product_id), first.created_at if first else None


def _variance_for(
    db: Session, product: Product, target: datetime, comparison_type: ComparisonType
) -> VarianceResult:
    stock_at_target = ledger_service.stock_at_date(db, product.id, target)
    comparison_value, comparison_date = _comparison(db, product.id, target, comparison_type)
    variance = stock_at_target - comparison_value
    return VarianceResult(
        product_id=product.id,
        product_name=product.name,
        category_name=product.category.name if product.category else "",
        current_stock=product.number_of_stocks,
        stock_at_target=stock_at_target,
        comparison_value=comparison_value,
        comparison_date=comparison_date,
        variance=variance,
        variance_percentage=variance_percentage(variance, comparison_value),
        variance_type=variance_type_for(variance),
        target_date=target,
        comparison_type=comparison_type,
    )


def compute_variance(
    db: Session,
    product_id: str,
    target_date: datetime | None = None,
    comparison_type: ComparisonType | str = ComparisonType.PREVIOUS,
) -> VarianceResult:
    comparison_type = parse_comparison_type(comparison_type)
    product = db.get(Product, product_id)
    if not product:
        raise product_not_found(product_id)
    target = to_naive_utc(target_date) if target_date else utcnow()
    return _variance_for(db, product, target, comparison_type)


def summarize(results: list[VarianceResult]) -> VarianceSummary:
    if not results:
        return VarianceSummary()
    return VarianceSummary(
        total_products=len(results),
        increased_products=sum(1 for r in results if r.variance_type == VarianceType.INCREASE),
        decreased_products=sum(1 for r in results if r.variance_type == VarianceType.DECREASE),
        unchanged_products=sum(1 for r in results if r.variance_type == VarianceType.NO_CHANGE),
        average_variance=round(sum(r.variance for r in results) / len(results), 2),
    )


def compute_variance_batch(
    db: Session,
    actor: Actor,
    target_date: datetime | None = None,
    comparison_type: ComparisonType | str = ComparisonType.PREVIOUS,
    category_id: str | None = None,
    product_id: str | None = None,
) -> VarianceReport:
    """Variance for every product visible to ``actor``, optionally narrowed by category or product."""
    comparison_type = parse_comparison_type(comparison_type)
    target = to_naive_utc(target_date) if target_date else utcnow()

    visible = visible_products_query(actor)
    if visible is None:
        return VarianceReport()

    q = select(Product).where(Product.id.in_(visible))
    if category_id:
        q = q.where(Product.category_id == category_id)
    if product_id:
        q = q.where(Product.id == product_id)
    products = db.scalars(q.order_by(Product.name, Product.id)).all()

    results = [_variance_for(db, p, target, comparison_type) for p in products]
    logger.info(
        "Variance (%s) at %s over %d products for %s %s",
        comparison_type.value,
        target.isoformat(),
        len(results),
        actor.role.value,
        actor.id,
    )
    return VarianceReport(results=results, summary=summarize(results))
