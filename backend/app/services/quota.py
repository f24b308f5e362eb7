from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.core.errors import ConfigurationError, QuotaExceeded
from app.models.enums import EntityType
from app.models.provisioning_job import ProvisioningJob
from app.models.tenant_plan import TenantPlan

PLAN_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class QuotaGuard:
    def __init__(self, limited_entity_types: list[str] | set[EntityType], default_site_limit: int = 1):
        self.limited_entity_types = {EntityType(value) for value in limited_entity_types}
        self.default_site_limit = default_site_limit

    def applies_to(self, entity_type: EntityType) -> bool:
        return entity_type in self.limited_entity_types

    def site_limit(self, db: Session, entity_type: EntityType, entity_id: str, lock: bool = False) -> int:
        stmt = select(TenantPlan).where(TenantPlan.entity_type == entity_type, TenantPlan.entity_id == entity_id)
        if lock:
            # serializes concurrent admissions for the same tenant until commit
            stmt = stmt.with_for_update()
        plan = db.scalar(stmt)
        if plan is None or plan.site_limit is None:
            return self.default_site_limit
        return plan.site_limit

    def admit(self, db: Session, entity_type: EntityType, entity_id: str) -> None:
        if not self.applies_to(entity_type):
            return

        # the row lock needs a row, including for tenants that never had a plan
        db.execute(self.plan_anchor(db, entity_type, entity_id))
        limit = self.site_limit(db, entity_type, entity_id, lock=True)
        count = self._count_jobs(db, entity_type, entity_id)
        if count >= limit:
            raise QuotaExceeded(f"Store creation limit ({limit}) reached for this {entity_type.value}.")

    def remaining(self, db: Session, entity_type: EntityType, entity_id: str) -> int | None:
        if not self.applies_to(entity_type):
            return None
        limit = self.site_limit(db, entity_type, entity_id)
        return max(0, limit - self._count_jobs(db, entity_type, entity_id))

    @staticmethod
    def plan_anchor(db: Session, entity_type: EntityType, entity_id: str):
        """Insert an empty plan row for the tenant unless one exists; a NULL limit means the default."""
        dialect = db.get_bind().dialect.name
        insert = PLAN_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"Quota admission is not supported on {dialect}")
        return (
            insert(TenantPlan)
            .values(entity_type=entity_type, entity_id=entity_id, site_limit=None)
            .on_conflict_do_nothing(index_elements=["entity_type", "entity_id"])
        )

    @staticmethod
    def _count_jobs(db: Session, entity_type: EntityType, entity_id: str) -> int:
        return (
            db.scalar(
                select(func.count(ProvisioningJob.id)).where(
                    ProvisioningJob.entity_type == entity_type, ProvisioningJob.entity_id == entity_id
                )
            )
            or 0
        )
