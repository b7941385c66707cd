from datetime import datetime

from pydantic import BaseModel, Field

from stockledger.models.product import ProductStatus


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)


class CategoryOut(BaseModel):
    id: str
    name: str
    admin_id: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category_id: str
    price: float = Field(default=0.0, ge=0)
    number_of_stocks: int = Field(default=0, ge=0)
    threshold: int | None = Field(default=None, ge=0)  # None = DEFAULT_ALERT_THRESHOLD


class ThresholdUpdate(BaseModel):
    threshold: int = Field(ge=0)


class AssignStaff(BaseModel):
    staff_id: str


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    category_id: str
    price: float
    number_of_stocks: int
    threshold: int
    status: ProductStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
