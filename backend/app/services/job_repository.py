"""Durable storage for provisioning jobs, their audit logs and artifacts.

Every state change goes through :meth:`JobRepository.update` with an expected
prior status, which turns into ``UPDATE ... WHERE status = :expected``. Log
entries are single-row inserts, so concurrent writers never lose entries.
Population additionally runs under a leased claim taken with the same
conditional-update pattern, so only one worker drives a job at a time.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
import uuid

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import Conflict, JobNotFound
from app.models.enums import EntityType, JobStatus
from app.models.job_artifact import JobArtifact
from app.models.job_log import JobLog
from app.models.provisioning_job import ProvisioningJob

AdmissionCheck = Callable[[Session, EntityType, str], None]

JOB_CREATED_MESSAGE = "Job created and queued."


def parse_job_id(job_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except ValueError as exc:
        raise JobNotFound(f"Job {job_id} not found") from exc


class JobRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def create(
        self,
        request_spec: dict[str, Any],
        entity_type: EntityType,
        entity_id: str,
        admit: AdmissionCheck | None = None,
    ) -> uuid.UUID:
        with self.session_factory() as db:
            with db.begin():
                if admit is not None:
                    admit(db, entity_type, entity_id)
                job = ProvisioningJob(
                    status=JobStatus.PENDING,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    request_spec=request_spec,
                )
                db.add(job)
                db.flush()
                db.add(JobLog(job_id=job.id, message=JOB_CREATED_MESSAGE))
                return job.id

    def get(self, job_id: str | uuid.UUID) -> ProvisioningJob:
        parsed_id = parse_job_id(job_id)
        with self.session_factory() as db:
            job = db.get(ProvisioningJob, parsed_id)
            if job is None:
                raise JobNotFound(f"Job {job_id} not found")
            db.expunge(job)
            return job

    def exists(self, job_id: str | uuid.UUID) -> bool:
        try:
            parsed_id = parse_job_id(job_id)
        except JobNotFound:
            return False
        with self.session_factory() as db:
            return db.scalar(select(func.count(ProvisioningJob.id)).where(ProvisioningJob.id == parsed_id)) == 1

    def update(
        self,
        job_id: str | uuid.UUID,
        changes: dict[str, Any],
        expected_status: JobStatus | None = None,
        log_message: str | None = None,
        claim_id: str | None = None,
    ) -> None:
        parsed_id = parse_job_id(job_id)
        values = dict(changes)
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = update(ProvisioningJob).where(ProvisioningJob.id == parsed_id)
        if expected_status is not None:
            stmt = stmt.where(ProvisioningJob.status == expected_status)
        if claim_id is not None:
            stmt = stmt.where(ProvisioningJob.population_claim_id == claim_id)

        with self.session_factory() as db:
            with db.begin():
                result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
                if result.rowcount == 0:
                    current = db.execute(
                        select(ProvisioningJob.status, ProvisioningJob.population_claim_id).where(
                            ProvisioningJob.id == parsed_id
                        )
                    ).first()
                    if current is None:
                        raise JobNotFound(f"Job {job_id} not found")
                    if expected_status is not None and JobStatus(current.status) != expected_status:
                        raise Conflict(
                            f"Job {job_id} is {JobStatus(current.status).value}, expected {expected_status.value}"
                        )
                    raise Conflict(f"Job {job_id} population is claimed by {current.population_claim_id}")
                if log_message:
                    db.add(JobLog(job_id=parsed_id, message=log_message))

    def claim_population(self, job_id: str | uuid.UUID, claim_id: str, lease: timedelta) -> bool:
        """Take the population claim unless another worker holds an unexpired one."""
        parsed_id = parse_job_id(job_id)
        now = datetime.now(timezone.utc)
        stmt = (
            update(ProvisioningJob)
            .where(
                ProvisioningJob.id == parsed_id,
                ProvisioningJob.status.in_([JobStatus.AUTHORIZED, JobStatus.POPULATING]),
                or_(
                    ProvisioningJob.population_claimed_at.is_(None),
                    ProvisioningJob.population_claimed_at < now - lease,
                ),
            )
            .values(population_claim_id=claim_id, population_claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            with db.begin():
                if db.execute(stmt).rowcount == 1:
                    return True
                if db.get(ProvisioningJob, parsed_id) is None:
                    raise JobNotFound(f"Job {job_id} not found")
                return False

    def append_log(self, job_id: str | uuid.UUID, message: str) -> None:
        parsed_id = parse_job_id(job_id)
        with self.session_factory() as db:
            with db.begin():
                if db.get(ProvisioningJob, parsed_id) is None:
                    raise JobNotFound(f"Job {job_id} not found")
                db.add(JobLog(job_id=parsed_id, message=message))

    def get_logs(self, job_id: str | uuid.UUID, limit: int | None = None) -> list[JobLog]:
        parsed_id = parse_job_id(job_id)
        stmt = select(JobLog).where(JobLog.job_id == parsed_id).order_by(JobLog.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as db:
            logs = db.scalars(stmt).all()
            db.expunge_all()
            # newest entries are fetched first; the trail is returned oldest first
            return list(reversed(logs))

    def list_by_entity(self, entity_type: EntityType, entity_id: str, limit: int = 50) -> list[ProvisioningJob]:
        stmt = (
            select(ProvisioningJob)
            .where(ProvisioningJob.entity_type == entity_type, ProvisioningJob.entity_id == entity_id)
            .order_by(ProvisioningJob.created_at.desc())
            .limit(limit)
        )
        return self._list(stmt)

    def list_all(self, limit: int = 50) -> list[ProvisioningJob]:
        return self._list(select(ProvisioningJob).order_by(ProvisioningJob.created_at.desc()).limit(limit))

    def list_stale(self, status: JobStatus, older_than: datetime, limit: int = 100) -> list[ProvisioningJob]:
        stmt = (
            select(ProvisioningJob)
            .where(ProvisioningJob.status == status, ProvisioningJob.updated_at < older_than)
            .order_by(ProvisioningJob.updated_at.asc())
            .limit(limit)
        )
        return self._list(stmt)

    def count_by_entity(self, entity_type: EntityType, entity_id: str) -> int:
        stmt = select(func.count(ProvisioningJob.id)).where(
            ProvisioningJob.entity_type == entity_type, ProvisioningJob.entity_id == entity_id
        )
        with self.session_factory() as db:
            return db.scalar(stmt) or 0

    def delete(self, job_id: str | uuid.UUID) -> bool:
        try:
            parsed_id = parse_job_id(job_id)
        except JobNotFound:
            return False
        with self.session_factory() as db:
            with db.begin():
                db.execute(delete(JobLog).where(JobLog.job_id == parsed_id))
                db.execute(delete(JobArtifact).where(JobArtifact.job_id == parsed_id))
                result = db.execute(delete(ProvisioningJob).where(ProvisioningJob.id == parsed_id))
                return result.rowcount > 0

    def save_generated_content(self, job_id: str | uuid.UUID, content: dict[str, Any]) -> None:
        self.update(job_id, {"generated_content": content}, expected_status=JobStatus.POPULATING)

    def get_artifact(self, job_id: str | uuid.UUID, key: str) -> JobArtifact | None:
        parsed_id = parse_job_id(job_id)
        with self.session_factory() as db:
            artifact = db.scalar(select(JobArtifact).where(JobArtifact.job_id == parsed_id, JobArtifact.key == key))
            if artifact is not None:
                db.expunge(artifact)
            return artifact

    def record_artifact(
        self,
        job_id: str | uuid.UUID,
        key: str,
        external_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """Return False when the key was already recorded for the job."""
        parsed_id = parse_job_id(job_id)
        try:
            with self.session_factory() as db:
                with db.begin():
                    if db.get(ProvisioningJob, parsed_id) is None:
                        raise JobNotFound(f"Job {job_id} not found")
                    db.add(JobArtifact(job_id=parsed_id, key=key, external_id=external_id, payload=payload or {}))
        except IntegrityError:
            return False
        return True

    def _list(self, stmt) -> list[ProvisioningJob]:
        with self.session_factory() as db:
            jobs = db.scalars(stmt).all()
            db.expunge_all()
            return list(jobs)
