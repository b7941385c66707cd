import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Table, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.database import Base
from stockledger.models.user import User

# Staff assigned to a whole category (category-scoped visibility)
category_assignees = Table(
    "category_assignees",
    Base.metadata,
    Column("category_id", String, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    Column("staff_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("admin_id", "name", name="uq_categories_admin_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    admin: Mapped["User"] = relationship("User")
    products: Mapped[list["Product"]] = relationship("Product", back_populates="category")  # noqa: F821
    assignees: Mapped[list["User"]] = relationship("User", secondary=category_assignees)
