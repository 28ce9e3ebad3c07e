from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.scheduled_task import new_id


class Invoice(TimestampMixin, Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    # status: PENDING | PAID | OVERDUE | CANCELLED
    status: Mapped[str] = mapped_column(String(16), index=True, nullable=False, default="PENDING")
    due_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class Quote(TimestampMixin, Base):
    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    quote_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # status: DRAFT | SENT | ACCEPTED | REJECTED | EXPIRED
    status: Mapped[str] = mapped_column(String(16), index=True, nullable=False, default="DRAFT")
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
