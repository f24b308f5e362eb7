"""Provisioning job lifecycle.

pending -> awaiting_auth -> authorized -> populating -> completed | failed

Every transition is written with the expected prior status, so a retried or
out-of-order call fails with ``Conflict`` instead of re-applying a transition.
Population also takes a leased claim on the job first; a delivery that finds
the claim held reports ``IN_PROGRESS`` and is redelivered later.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
import enum
import logging
from typing import Any
import uuid

from prometheus_client import Counter

from app.core.errors import (
    AuthenticationError,
    Conflict,
    FatalJobError,
    JobNotFound,
    PermissionDenied,
    QuotaExceeded,
)
from app.core.security import CallerContext
from app.models.enums import ALLOWED_TRANSITIONS, EntityType, JobStatus
from app.models.job_log import JobLog
from app.models.provisioning_job import ProvisioningJob
from app.services.dispatcher import TaskDispatcher
from app.services.handoff import AuthorizationHandoffManager
from app.services.job_repository import JobRepository
from app.services.notifier import WebhookNotifier
from app.services.populator import PopulationProgress, StorePopulator
from app.services.quota import QuotaGuard

logger = logging.getLogger(__name__)

jobs_created_total = Counter("jobs_created_total", "Total provisioning jobs admitted")
jobs_quota_rejected_total = Counter("jobs_quota_rejected_total", "Total job admissions rejected by quota")
population_tasks_dispatched_total = Counter("population_tasks_dispatched_total", "Total population tasks dispatched")
jobs_completed_total = Counter("jobs_completed_total", "Total jobs that reached completed")
jobs_failed_total = Counter("jobs_failed_total", "Total jobs that reached failed")


class PopulationOutcome(str, enum.Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_FAILED = "already_failed"
    FAILED = "failed"
    ABANDONED = "abandoned"
    IN_PROGRESS = "in_progress"

    @property
    def acknowledged(self) -> bool:
        return self not in {PopulationOutcome.FAILED, PopulationOutcome.IN_PROGRESS}


RELEASED_CLAIM = {"population_claim_id": None, "population_claimed_at": None}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStateMachine:
    def __init__(
        self,
        repository: JobRepository,
        quota_guard: QuotaGuard,
        handoff: AuthorizationHandoffManager,
        populator: StorePopulator,
        notifier: WebhookNotifier,
        dispatcher: TaskDispatcher | None = None,
        auto_populate_on_authorize: bool = True,
        population_lease: timedelta = timedelta(minutes=15),
    ):
        self.repository = repository
        self.quota_guard = quota_guard
        self.handoff = handoff
        self.populator = populator
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.auto_populate_on_authorize = auto_populate_on_authorize
        self.population_lease = population_lease

    # -- admission and queries -------------------------------------------

    def create(self, request_spec: dict[str, Any], entity_type: EntityType, entity_id: str) -> uuid.UUID:
        try:
            job_id = self.repository.create(request_spec, entity_type, entity_id, admit=self.quota_guard.admit)
        except QuotaExceeded:
            jobs_quota_rejected_total.inc()
            logger.info("Quota rejected job for %s %s", entity_type.value, entity_id)
            raise
        jobs_created_total.inc()
        logger.info("Job %s created for %s %s", job_id, entity_type.value, entity_id)
        return job_id

    def get_job(self, job_id: str | uuid.UUID, caller: CallerContext | None = None) -> ProvisioningJob:
        job = self.repository.get(job_id)
        if caller is not None:
            self._check_access(job, caller)
        return job

    def get_logs(self, job_id: str | uuid.UUID, limit: int | None = None) -> list[JobLog]:
        return self.repository.get_logs(job_id, limit=limit)

    def list_jobs(self, caller: CallerContext, limit: int = 50) -> list[ProvisioningJob]:
        if caller.is_super_admin:
            return self.repository.list_all(limit=limit)
        entity_type, entity_id = caller.owned_entity()
        return self.repository.list_by_entity(entity_type, entity_id, limit=limit)

    def delete(self, job_id: str | uuid.UUID, caller: CallerContext) -> bool:
        try:
            job = self.repository.get(job_id)
        except JobNotFound:
            return False
        self._check_access(job, caller)
        deleted = self.repository.delete(job.id)
        if deleted:
            logger.info("Job %s deleted by %s (status was %s)", job.id, caller.uid, job.status.value)
        return deleted

    # -- transitions -------------------------------------------------------

    def assign(
        self,
        job_id: str | uuid.UUID,
        store_domain: str,
        external_shop_id: str,
        storefront_password: str | None = None,
        caller_base_url: str | None = None,
    ) -> ProvisioningJob:
        job = self.repository.get(job_id)
        if job.status != JobStatus.PENDING:
            self._reject(job, JobStatus.AWAITING_AUTH)

        install_url = self.handoff.build_install_url(job.id, store_domain, caller_base_url)
        self._transition(
            job.id,
            JobStatus.PENDING,
            JobStatus.AWAITING_AUTH,
            f"Store {store_domain} assigned. Authorization URL generated.",
            store_domain=store_domain,
            external_shop_id=external_shop_id,
            storefront_password=storefront_password,
            install_url=install_url,
        )
        return self.repository.get(job.id)

    def authorize(self, state: str | None, code: str, shop: str, query_params: Mapping[str, str]) -> ProvisioningJob:
        job_id = self.handoff.resolve_state(state)
        self.handoff.verify_callback_hmac(query_params)

        try:
            job = self.repository.get(job_id)
        except JobNotFound as exc:
            raise AuthenticationError("Unrecognized OAuth state") from exc

        if job.status != JobStatus.AWAITING_AUTH:
            self._reject(job, JobStatus.AUTHORIZED)
        if shop.lower() != (job.store_domain or "").lower():
            raise AuthenticationError("Callback shop does not match the store assigned to this job")

        try:
            access_token = self.handoff.exchange_code(shop, code)
        except FatalJobError as exc:
            self._fail(job, JobStatus.AWAITING_AUTH, f"Authorization callback failed: {exc}")
            raise

        self._transition(
            job.id,
            JobStatus.AWAITING_AUTH,
            JobStatus.AUTHORIZED,
            "Store access token obtained.",
            access_token_encrypted=self.handoff.seal_access_token(access_token),
        )

        if self.auto_populate_on_authorize:
            try:
                self.trigger_population(job.id)
            except Exception as exc:  # noqa: BLE001
                # job stays authorized; an operator can trigger population again
                logger.exception("Could not dispatch population for job %s", job.id)
                self.repository.append_log(job.id, f"Population could not be enqueued automatically: {exc}")
        return self.repository.get(job.id)

    def trigger_population(self, job_id: str | uuid.UUID) -> str:
        if self.dispatcher is None:
            raise RuntimeError("No task dispatcher configured")

        job = self.repository.get(job_id)
        if job.status not in {JobStatus.AUTHORIZED, JobStatus.POPULATING}:
            self._reject(job, JobStatus.POPULATING)

        task_ref = self.dispatcher.dispatch(str(job.id))
        population_tasks_dispatched_total.inc()
        self.repository.append_log(job.id, "Population task enqueued.")
        return task_ref

    def execute_population(self, job_id: str | uuid.UUID) -> PopulationOutcome:
        try:
            job = self.repository.get(job_id)
        except JobNotFound:
            logger.info("Job %s no longer exists; abandoning population", job_id)
            return PopulationOutcome.ABANDONED

        if job.status == JobStatus.COMPLETED:
            logger.info("Job %s already completed; skipping population", job.id)
            return PopulationOutcome.ALREADY_COMPLETED
        if job.status == JobStatus.FAILED:
            logger.info("Job %s already failed; skipping population", job.id)
            return PopulationOutcome.ALREADY_FAILED
        if job.status in {JobStatus.PENDING, JobStatus.AWAITING_AUTH}:
            self._reject(job, JobStatus.POPULATING)

        claim_id = uuid.uuid4().hex
        try:
            if not self.repository.claim_population(job.id, claim_id, self.population_lease):
                logger.info("Population of job %s is claimed by another worker", job.id)
                return self._outcome_after_race(job.id)
            # the job may have moved between the first read and the claim
            job = self.repository.get(job.id)
            if job.status == JobStatus.AUTHORIZED:
                self._transition(
                    job.id, JobStatus.AUTHORIZED, JobStatus.POPULATING, "Population started.", claim_id=claim_id
                )
            else:
                self.repository.append_log(job.id, "Resuming population after task redelivery.")
            job = self.repository.get(job.id)
        except Conflict:
            return self._outcome_after_race(job.id)
        except JobNotFound:
            logger.info("Job %s deleted before population started; abandoning", job.id)
            return PopulationOutcome.ABANDONED

        try:
            if not job.access_token_encrypted or not job.store_domain:
                raise FatalJobError("The job has no store access token or store domain")
            access_token = self.handoff.open_access_token(job.access_token_encrypted)
            result = self.populator.populate(job, access_token, PopulationProgress(self.repository, job.id))
            self._transition(
                job.id,
                JobStatus.POPULATING,
                JobStatus.COMPLETED,
                "Store populated successfully.",
                claim_id=claim_id,
                created_store_url=result.created_store_url,
                created_store_admin_url=result.created_store_admin_url,
                last_error=None,
                completed_at=_utcnow(),
                **RELEASED_CLAIM,
            )
        except JobNotFound:
            logger.info("Job %s was deleted during population; abandoning", job.id)
            return PopulationOutcome.ABANDONED
        except Conflict:
            return self._outcome_after_race(job.id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Population failed for job %s", job.id)
            try:
                self._fail(job, JobStatus.POPULATING, f"Content population failed: {exc}", claim_id=claim_id)
            except JobNotFound:
                return PopulationOutcome.ABANDONED
            except Conflict:
                return self._outcome_after_race(job.id)
            return PopulationOutcome.FAILED

        jobs_completed_total.inc()
        self.notifier.notify(
            job.webhook_url,
            {
                "jobId": str(job.id),
                "status": JobStatus.COMPLETED.value,
                "message": "Store created and populated successfully.",
                "storeName": job.request_spec.get("store_name"),
                "storeUrl": result.created_store_url,
                "adminUrl": result.created_store_admin_url,
            },
        )
        return PopulationOutcome.COMPLETED

    def expire_stale_authorizations(self, max_age: timedelta) -> int:
        cutoff = _utcnow() - max_age
        expired = 0
        for job in self.repository.list_stale(JobStatus.AWAITING_AUTH, cutoff):
            try:
                self._fail(job, JobStatus.AWAITING_AUTH, "Store authorization was not completed in time.")
            except (Conflict, JobNotFound):
                continue
            expired += 1
        return expired

    # -- helpers -------------------------------------------------------------

    def _transition(
        self,
        job_id: uuid.UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        message: str,
        claim_id: str | None = None,
        **changes: Any,
    ) -> None:
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise Conflict(f"Transition {from_status.value} -> {to_status.value} is not allowed")
        try:
            self.repository.update(
                job_id,
                {"status": to_status, **changes},
                expected_status=from_status,
                log_message=message,
                claim_id=claim_id,
            )
        except Conflict:
            logger.warning("Rejected %s -> %s for job %s", from_status.value, to_status.value, job_id)
            raise
        logger.info("Job %s: %s -> %s", job_id, from_status.value, to_status.value)

    def _fail(
        self, job: ProvisioningJob, from_status: JobStatus, message: str, claim_id: str | None = None
    ) -> None:
        self._transition(
            job.id,
            from_status,
            JobStatus.FAILED,
            message,
            claim_id=claim_id,
            last_error=message,
            completed_at=_utcnow(),
            **RELEASED_CLAIM,
        )
        jobs_failed_total.inc()
        self.notifier.notify(
            job.webhook_url,
            {
                "jobId": str(job.id),
                "status": JobStatus.FAILED.value,
                "message": message,
                "storeName": job.request_spec.get("store_name"),
            },
        )

    def _reject(self, job: ProvisioningJob, target: JobStatus) -> None:
        logger.warning("Rejected transition to %s for job %s in status %s", target.value, job.id, job.status.value)
        raise Conflict(f"Job {job.id} is {job.status.value}; cannot move to {target.value}")

    def _outcome_after_race(self, job_id: uuid.UUID) -> PopulationOutcome:
        try:
            current = self.repository.get(job_id)
        except JobNotFound:
            return PopulationOutcome.ABANDONED
        if current.status == JobStatus.COMPLETED:
            return PopulationOutcome.ALREADY_COMPLETED
        if current.status == JobStatus.FAILED:
            return PopulationOutcome.ALREADY_FAILED
        if current.status in {JobStatus.AUTHORIZED, JobStatus.POPULATING}:
            logger.info("Job %s is still %s under another worker's claim", job_id, current.status.value)
            return PopulationOutcome.IN_PROGRESS
        raise Conflict(f"Job {job_id} changed status concurrently to {current.status.value}")

    @staticmethod
    def _check_access(job: ProvisioningJob, caller: CallerContext) -> None:
        if caller.is_super_admin or caller.owns(job.entity_type, job.entity_id):
            return
        raise PermissionDenied("You do not have permission to access this job")
