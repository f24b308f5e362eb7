import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.api.deps import get_services, require_task_identity
from app.core.container import ServiceContainer
from app.core.errors import OrchestratorError
from app.schemas.jobs import TaskPayload, TaskResponse

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.post("/populate", response_model=TaskResponse, dependencies=[Depends(require_task_identity)])
def populate_task(payload: TaskPayload, services: ServiceContainer = Depends(get_services)):
    if not payload.job_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="jobId is required in the task payload.")

    try:
        outcome = services.jobs.execute_population(payload.job_id)
    except OrchestratorError as exc:
        # any non-2xx makes the queue redeliver with backoff
        logger.warning("Population task for job %s failed: %s", payload.job_id, exc.message)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": exc.message, "code": exc.code},
        )

    if not outcome.acknowledged:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"jobId": payload.job_id, "outcome": outcome.value},
        )

    job_status = None
    if services.repository.exists(payload.job_id):
        job_status = services.repository.get(payload.job_id).status
    return TaskResponse(job_id=payload.job_id, outcome=outcome.value, status=job_status)
