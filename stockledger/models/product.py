import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Integer, String, Table, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.database import Base
from stockledger.models.category import Category
from stockledger.models.user import User

# Staff assigned to individual products
product_assignees = Table(
    "product_assignees",
    Base.metadata,
    Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("staff_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class ProductStatus(str, PyEnum):
    GOOD = "GOOD"
    CRITICAL = "CRITICAL"


def status_for(number_of_stocks: int, threshold: int) -> ProductStatus:
    return ProductStatus.CRITICAL if number_of_stocks <= threshold else ProductStatus.GOOD


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sku: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category_id: Mapped[str] = mapped_column(String, ForeignKey("categories.id"), nullable=False, index=True)
    price: Mapped[float] = mapped_column(Float, default=0.0)

    number_of_stocks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ProductStatus] = mapped_column(
        Enum(ProductStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProductStatus.CRITICAL,
    )

    # Bumped on every flush; concurrent writers holding a stale copy get StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    category: Mapped["Category"] = relationship("Category", back_populates="products")
    assignees: Mapped[list["User"]] = relationship("User", secondary=product_assignees)

    __mapper_args__ = {"version_id_col": version}

    def refresh_status(self) -> ProductStatus:
        self.status = status_for(self.number_of_stocks, self.threshold)
        return self.status
