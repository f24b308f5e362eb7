from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import EntityType


class TenantPlan(Base):
    __tablename__ = "tenant_plans"

    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="entity_type", values_callable=lambda enum_cls: [item.value for item in enum_cls]),
        primary_key=True,
    )
    entity_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    # NULL falls back to the configured default limit
    site_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
