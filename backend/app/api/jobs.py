from fastapi import APIRouter, Depends, status

from app.api.deps import get_caller, get_services, require_admin, require_automation_key
from app.core.container import ServiceContainer
from app.core.security import CallerContext
from app.models.enums import JobStatus
from app.models.provisioning_job import ProvisioningJob
from app.schemas.jobs import (
    AssignStoreRequest,
    AssignStoreResponse,
    CreateJobRequest,
    CreateJobResponse,
    DeleteJobResponse,
    EnqueueResponse,
    EntityRef,
    JobDetailResponse,
    JobListResponse,
    JobLogResponse,
    JobResponse,
    JobResultResponse,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _to_job_response(job: ProvisioningJob) -> JobResponse:
    spec = job.request_spec or {}
    result = None
    if job.status == JobStatus.COMPLETED:
        result = JobResultResponse(
            created_store_url=job.created_store_url,
            created_store_admin_url=job.created_store_admin_url,
            storefront_password=job.storefront_password,
        )
    return JobResponse(
        id=str(job.id),
        status=job.status,
        entity=EntityRef(type=job.entity_type, id=job.entity_id),
        store_name=spec.get("store_name"),
        business_email=spec.get("business_email"),
        store_domain=job.store_domain,
        external_shop_id=job.external_shop_id,
        install_url=job.install_url,
        result=result,
        last_error=job.last_error,
        request_spec=spec,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_automation_key)],
)
def create_job(payload: CreateJobRequest, services: ServiceContainer = Depends(get_services)) -> CreateJobResponse:
    request_spec = payload.model_dump(mode="json", exclude={"entity"})
    job_id = services.jobs.create(request_spec, payload.entity.type, payload.entity.id)
    return CreateJobResponse(job_id=str(job_id), status=JobStatus.PENDING)


@router.get("", response_model=JobListResponse)
def list_jobs(
    caller: CallerContext = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> JobListResponse:
    jobs = services.jobs.list_jobs(caller)
    return JobListResponse(jobs=[_to_job_response(job) for job in jobs])


@router.get("/{job_id}", response_model=JobDetailResponse)
def get_job(
    job_id: str,
    caller: CallerContext = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> JobDetailResponse:
    job = services.jobs.get_job(job_id, caller)
    logs = services.jobs.get_logs(job.id, limit=100)
    base = _to_job_response(job)
    return JobDetailResponse(
        **base.model_dump(),
        logs=[JobLogResponse(timestamp=entry.created_at, message=entry.message) for entry in logs],
    )


@router.delete("/{job_id}", response_model=DeleteJobResponse)
def delete_job(
    job_id: str,
    caller: CallerContext = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DeleteJobResponse:
    deleted = services.jobs.delete(job_id, caller)
    message = "Job deleted successfully." if deleted else "Job already deleted."
    return DeleteJobResponse(job_id=job_id, deleted=deleted, message=message)


@router.post("/{job_id}/assign", response_model=AssignStoreResponse)
def assign_store(
    job_id: str,
    payload: AssignStoreRequest,
    _admin: CallerContext = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> AssignStoreResponse:
    job = services.jobs.assign(
        job_id,
        store_domain=payload.store_domain,
        external_shop_id=payload.external_shop_id,
        storefront_password=payload.storefront_password,
        caller_base_url=str(payload.caller_base_url) if payload.caller_base_url else None,
    )
    return AssignStoreResponse(job_id=str(job.id), status=job.status, install_url=job.install_url)


@router.post("/{job_id}/populate", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_population(
    job_id: str,
    _admin: CallerContext = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> EnqueueResponse:
    task_ref = services.jobs.trigger_population(job_id)
    job = services.jobs.get_job(job_id)
    return EnqueueResponse(job_id=str(job.id), status=job.status, task_ref=task_ref)
