"""Marketplace orders: placed by buyers, moved along by payment webhooks."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from flowbench.common.db import Base


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_number: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    buyer_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    # Filled once gig listings resolve their seller.
    seller_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gig_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    package_id: Mapped[str | None] = mapped_column(String, nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    requirements: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, index=True, default="pending")
    payment_status: Mapped[str] = mapped_column(String, index=True, default="unpaid")
    payment_intent_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
