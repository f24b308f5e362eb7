from datetime import datetime, timedelta, timezone
import uuid

import pytest
from sqlalchemy import update

from app.core.errors import Conflict, JobNotFound
from app.models.enums import EntityType, JobStatus
from app.models.provisioning_job import ProvisioningJob
from app.services.job_repository import JOB_CREATED_MESSAGE
from support import sample_request_spec


def test_create_stores_pending_job_with_initial_log(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")

    job = repository.get(job_id)
    assert job.status == JobStatus.PENDING
    assert job.entity_type == EntityType.USER
    assert job.request_spec["store_name"] == "Acme Candles"
    assert [entry.message for entry in repository.get_logs(job_id)] == [JOB_CREATED_MESSAGE]


def test_create_rolls_back_when_admission_rejects(repository):
    def reject(_db, _entity_type, _entity_id):
        raise Conflict("no room")

    with pytest.raises(Conflict):
        repository.create(sample_request_spec(), EntityType.USER, "user-1", admit=reject)

    assert repository.count_by_entity(EntityType.USER, "user-1") == 0


def test_update_with_stale_expected_status_is_rejected(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")

    with pytest.raises(Conflict):
        repository.update(
            job_id,
            {"status": JobStatus.POPULATING},
            expected_status=JobStatus.AUTHORIZED,
            log_message="should not be written",
        )

    assert repository.get(job_id).status == JobStatus.PENDING
    assert len(repository.get_logs(job_id)) == 1


def test_update_applies_changes_and_log_together(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")

    repository.update(
        job_id,
        {"status": JobStatus.AWAITING_AUTH, "store_domain": "acme.myshopify.com"},
        expected_status=JobStatus.PENDING,
        log_message="Store assigned.",
    )

    job = repository.get(job_id)
    assert job.status == JobStatus.AWAITING_AUTH
    assert job.store_domain == "acme.myshopify.com"
    assert repository.get_logs(job_id)[-1].message == "Store assigned."


def test_update_missing_job_raises_not_found(repository):
    with pytest.raises(JobNotFound):
        repository.update(uuid.uuid4(), {"last_error": "x"}, expected_status=JobStatus.PENDING)


def test_get_rejects_malformed_ids(repository):
    with pytest.raises(JobNotFound):
        repository.get("not-a-uuid")
    assert repository.exists("not-a-uuid") is False


def test_get_logs_limit_returns_latest_entries_oldest_first(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")
    for index in range(5):
        repository.append_log(job_id, f"step {index}")

    logs = repository.get_logs(job_id, limit=3)

    assert [entry.message for entry in logs] == ["step 2", "step 3", "step 4"]


def test_append_log_to_missing_job_raises_not_found(repository):
    with pytest.raises(JobNotFound):
        repository.append_log(uuid.uuid4(), "orphan")


def test_delete_removes_job_logs_and_artifacts(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")
    repository.record_artifact(job_id, "page:about", "101", {"id": 101})

    assert repository.delete(job_id) is True
    assert repository.exists(job_id) is False
    assert repository.get_logs(job_id) == []
    assert repository.get_artifact(job_id, "page:about") is None
    assert repository.delete(job_id) is False


def test_artifacts_are_keyed_per_job(repository):
    first = repository.create(sample_request_spec(), EntityType.COMPANY, "co-1")
    second = repository.create(sample_request_spec(), EntityType.COMPANY, "co-1")
    repository.record_artifact(first, "product:0", "55", {"id": 55, "title": "Candle"})

    artifact = repository.get_artifact(first, "product:0")
    assert artifact.external_id == "55"
    assert artifact.payload["title"] == "Candle"
    assert repository.get_artifact(second, "product:0") is None


def test_list_by_entity_only_returns_that_entity(repository):
    repository.create(sample_request_spec(), EntityType.COMPANY, "co-1")
    repository.create(sample_request_spec(), EntityType.COMPANY, "co-1")
    repository.create(sample_request_spec(), EntityType.USER, "co-1")

    jobs = repository.list_by_entity(EntityType.COMPANY, "co-1")

    assert len(jobs) == 2
    assert {job.entity_type for job in jobs} == {EntityType.COMPANY}
    assert len(repository.list_all()) == 3


def test_recording_an_artifact_twice_keeps_the_first(repository):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")

    assert repository.record_artifact(job_id, "page:about", "101", {"id": 101}) is True
    assert repository.record_artifact(job_id, "page:about", "202", {"id": 202}) is False

    assert repository.get_artifact(job_id, "page:about").external_id == "101"


def test_population_claim_is_exclusive_until_the_lease_expires(repository, session_factory):
    job_id = repository.create(sample_request_spec(), EntityType.USER, "user-1")
    lease = timedelta(minutes=15)

    assert repository.claim_population(job_id, "worker-a", lease) is False

    repository.update(job_id, {"status": JobStatus.AUTHORIZED})
    assert repository.claim_population(job_id, "worker-a", lease) is True
    assert repository.claim_population(job_id, "worker-b", lease) is False

    with pytest.raises(Conflict, match="claimed by worker-a"):
        repository.update(
            job_id, {"status": JobStatus.POPULATING}, expected_status=JobStatus.AUTHORIZED, claim_id="worker-b"
        )

    with session_factory() as db:
        db.execute(
            update(ProvisioningJob)
            .where(ProvisioningJob.id == job_id)
            .values(population_claimed_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        db.commit()

    assert repository.claim_population(job_id, "worker-b", lease) is True
    assert repository.get(job_id).population_claim_id == "worker-b"


def test_claiming_a_missing_job_raises_not_found(repository):
    with pytest.raises(JobNotFound):
        repository.claim_population(uuid.uuid4(), "worker-a", timedelta(minutes=15))
