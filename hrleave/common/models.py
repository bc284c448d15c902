"""Common ORM models: AppSetting."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from hrleave.common.audit import utcnow
from hrleave.database import Base


class AppSetting(Base):
    """Key/value JSON settings; tenant rule tables live under ``leave_rules:<company>``."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=sa.func.now(),
    )
    updated_by: Mapped[Optional[str]] = mapped_column(sa.String(128))


def pg_enum(enum_cls, name: str) -> sa.Enum:
    """Enum column type persisted by member value (``on-hold``, ``Full Day``)."""
    return sa.Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
