from datetime import datetime
import uuid

from sqlalchemy import JSON, DateTime, Enum, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import EntityType, JobStatus


def _enum_values(enum_cls) -> list[str]:
    return [item.value for item in enum_cls]


class ProvisioningJob(Base):
    __tablename__ = "provisioning_jobs"
    __table_args__ = (
        Index("ix_provisioning_jobs_entity", "entity_type", "entity_id"),
        Index("ix_provisioning_jobs_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )

    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="entity_type", values_callable=_enum_values), nullable=False
    )
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    request_spec: Mapped[dict] = mapped_column(JSON, nullable=False)

    store_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_shop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    install_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    storefront_password: Mapped[str | None] = mapped_column(String(255), nullable=True)

    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_content: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_store_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_store_admin_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # held by the worker currently running population; expires after the lease
    population_claim_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    population_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def webhook_url(self) -> str | None:
        return (self.request_spec or {}).get("webhook_url")
