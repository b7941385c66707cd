from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.database import Base


class StockSnapshot(Base):
    """Cached replay checkpoint. Not authoritative; always derivable from the ledger."""

    __tablename__ = "stock_snapshots"
    __table_args__ = (Index("ix_stock_snapshots_product_entry", "product_id", "last_entry_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[float] = mapped_column(Float, default=0.0)
    last_entry_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # created_at of the last folded entry; lets stock_at_date pick a snapshot by time
    last_entry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    taken_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
