from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from stockledger.actors import ActorRole
from stockledger.models.inventory_log import ActionType
from stockledger.models.product import ProductStatus
from stockledger.services.variance_service import ComparisonType, VarianceType


# --- Requests ---

class StockChange(BaseModel):
    quantity: int = Field(gt=0)
    note: str | None = None


class StockDelta(BaseModel):
    delta: int  # signed, non-zero
    note: str | None = None


class StockLevelSet(BaseModel):
    number_of_stocks: int = Field(ge=0)
    note: str | None = None


class InventoryUpdate(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    action: ActionType
    note: str | None = None
    to_product_id: str | None = None


class TransferRequest(BaseModel):
    from_product_id: str
    to_product_id: str
    quantity: int = Field(gt=0)
    note: str | None = None


class LogFilter(BaseModel):
    """Typed filter for ledger queries; validated before it reaches the store."""

    product_id: str | None = None
    category_id: str | None = None
    action_type: ActionType | None = None
    actor_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["created_at", "action_type", "quantity"] = "created_at"
    order: Literal["asc", "desc"] = "desc"

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


# --- Responses ---

class InventoryLogOut(BaseModel):
    id: int
    product_id: str
    actor_role: ActorRole
    actor_id: str
    action_type: ActionType
    quantity: int
    quantity_display: str
    note: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    reference_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MutationOut(BaseModel):
    product_id: str
    previous_level: int
    new_level: int
    status: ProductStatus
    changed: bool
    threshold_crossed: bool
    log: InventoryLogOut | None = None


class TransferOut(BaseModel):
    reference_id: str
    source: MutationOut
    destination: MutationOut


class LogPageOut(BaseModel):
    items: list[InventoryLogOut]
    page: int
    limit: int
    total: int
    pages: int


class DateCount(BaseModel):
    date: date
    count: int


class LogStatsOut(BaseModel):
    total_logs: int
    increase_logs: int
    decrease_logs: int
    logs_by_date: list[DateCount]


class DailyBalanceOut(BaseModel):
    day: date
    closing_stock: int

    model_config = {"from_attributes": True}


class LedgerCheckOut(BaseModel):
    product_id: str
    recorded_stock: int
    replayed_stock: int
    entry_count: int
    consistent: bool

    model_config = {"from_attributes": True}


class VarianceOut(BaseModel):
    product_id: str
    product_name: str
    category_name: str
    current_stock: int
    stock_at_target: int
    comparison_value: float
    comparison_date: datetime | None = None
    variance: float
    variance_percentage: float
    variance_type: VarianceType
    target_date: datetime
    comparison_type: ComparisonType

    model_config = {"from_attributes": True}


class VarianceSummaryOut(BaseModel):
    total_products: int
    increased_products: int
    decreased_products: int
    unchanged_products: int
    average_variance: float

    model_config = {"from_attributes": True}


class VarianceReportOut(BaseModel):
    results: list[VarianceOut]
    summary: VarianceSummaryOut

    model_config = {"from_attributes": True}


def mutation_out(mutation) -> MutationOut:
    return MutationOut(
        product_id=mutation.product.id,
        previous_level=mutation.previous_level,
        new_level=mutation.new_level,
        status=mutation.product.status,
        changed=mutation.changed,
        threshold_crossed=mutation.threshold_crossed,
        log=InventoryLogOut.model_validate(mutation.log_entry) if mutation.log_entry else None,
    )


def transfer_out(transfer) -> TransferOut:
    return TransferOut(
        reference_id=transfer.reference_id,
        source=mutation_out(transfer.source),
        destination=mutation_out(transfer.destination),
    )
