from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.actors import ActorRole
from stockledger.database import Base
from stockledger.errors import ConflictError


class ActionType(str, PyEnum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    ADD = "ADD"
    REMOVE = "REMOVE"
    TRANSFER = "TRANSFER"
    UPDATE_PRODUCT_NUMBER_OF_STOCKS = "UPDATE_PRODUCT_NUMBER_OF_STOCKS"


INCREASE_ACTIONS = {ActionType.INCREASE, ActionType.ADD}
DECREASE_ACTIONS = {ActionType.DECREASE, ActionType.REMOVE}


class InventoryLog(Base):
    """Append-only ledger entry: one row per stock mutation."""

    __tablename__ = "inventory_logs"
    __table_args__ = (
        Index("ix_inventory_logs_product_created", "product_id", "created_at", "id"),
        {"sqlite_autoincrement": True},
    )

    # Autoincrement id doubles as the tie-breaker for equal timestamps
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    actor_role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, values_callable=lambda x: [e.value for e in x]), nullable=False
    )
    actor_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    action_type: Mapped[ActionType] = mapped_column(
        Enum(ActionType, values_callable=lambda x: [e.value for e in x]), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # signed: positive=in, negative=out
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_value: Mapped[str | None] = mapped_column(String, nullable=True)
    new_value: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)  # pairs transfer legs
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    @property
    def quantity_display(self) -> str:
        return f"{self.quantity:+d}"

    @property
    def increases_stock(self) -> bool:
        if self.action_type in INCREASE_ACTIONS:
            return True
        if self.action_type in DECREASE_ACTIONS:
            return False
        return self.quantity > 0


@event.listens_for(InventoryLog, "before_update")
def _reject_update(mapper, connection, target):
    raise ConflictError("Inventory log entries are append-only", code="LOG_IMMUTABLE")


@event.listens_for(InventoryLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ConflictError("Inventory log entries are append-only", code="LOG_IMMUTABLE")
