from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.scheduled_task import new_id


class UserSession(TimestampMixin, Base):
    # owned by the dashboard's auth provider; only the cleanup task touches it here
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    session_token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True, nullable=False)
