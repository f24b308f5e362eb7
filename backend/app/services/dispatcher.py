"""Task dispatch strategies for the population step.

The trigger endpoints only decide that population should happen; the
dispatcher gets it running outside the request. Locally it runs in a thread
pool, in deployed environments it becomes a Cloud Tasks HTTP task aimed at
``/tasks/populate`` so the queue owns delivery and retries.
"""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
import json
import logging
from typing import Any, Protocol

from google.cloud import tasks_v2

from app.core.config import Settings
from app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PopulationRunner = Callable[[str], Any]


class TaskDispatcher(Protocol):
    def dispatch(self, job_id: str) -> str: ...

    def shutdown(self) -> None: ...


class DirectTaskDispatcher:
    def __init__(self, runner: PopulationRunner, max_workers: int = 2):
        self.runner = runner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="populate")
        self._futures: set[Future] = set()

    def dispatch(self, job_id: str) -> str:
        future = self._executor.submit(self.runner, job_id)
        self._futures.add(future)
        future.add_done_callback(lambda done: self._on_done(job_id, done))
        return f"direct:{job_id}"

    def _on_done(self, job_id: str, future: Future) -> None:
        self._futures.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("Direct population run failed for job %s", job_id, exc_info=exc)

    def wait(self, timeout: float | None = None) -> None:
        for future in list(self._futures):
            try:
                future.result(timeout=timeout)
            except Exception:  # noqa: BLE001
                # already logged by the done callback
                continue

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class CloudTasksDispatcher:
    def __init__(
        self,
        project: str,
        location: str,
        queue: str,
        handler_url: str,
        service_account_email: str,
        audience: str | None = None,
        client: Any | None = None,
    ):
        self.project = project
        self.location = location
        self.queue = queue
        self.handler_url = handler_url
        self.service_account_email = service_account_email
        self.audience = audience or handler_url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = tasks_v2.CloudTasksClient()
        return self._client

    def build_task(self, job_id: str) -> dict[str, Any]:
        return {
            "http_request": {
                "http_method": tasks_v2.HttpMethod.POST,
                "url": self.handler_url,
                "headers": {"Content-Type": "application/json"},
                "body": json.dumps({"jobId": job_id}).encode("utf-8"),
                "oidc_token": {
                    "service_account_email": self.service_account_email,
                    "audience": self.audience,
                },
            }
        }

    def dispatch(self, job_id: str) -> str:
        parent = self.client.queue_path(self.project, self.location, self.queue)
        response = self.client.create_task(request={"parent": parent, "task": self.build_task(job_id)})
        logger.info("Enqueued population task %s for job %s", response.name, job_id)
        return response.name

    def shutdown(self) -> None:
        return None


def build_task_dispatcher(settings: Settings, runner: PopulationRunner) -> TaskDispatcher:
    mode = settings.resolved_dispatch_mode
    if mode == "direct":
        return DirectTaskDispatcher(runner, max_workers=settings.direct_dispatch_workers)
    if mode != "queued":
        raise ConfigurationError(f"Unknown task dispatch mode: {mode}")

    missing = [
        name
        for name, value in (
            ("CLOUD_TASKS_PROJECT", settings.cloud_tasks_project),
            ("TASK_HANDLER_BASE_URL", settings.task_handler_base_url),
            ("TASK_SERVICE_ACCOUNT_EMAIL", settings.task_service_account_email),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Queued task dispatch requires {', '.join(missing)}")

    handler_url = f"{settings.task_handler_base_url.rstrip('/')}/tasks/populate"
    return CloudTasksDispatcher(
        project=settings.cloud_tasks_project,
        location=settings.cloud_tasks_location,
        queue=settings.cloud_tasks_queue,
        handler_url=handler_url,
        service_account_email=settings.task_service_account_email,
        audience=settings.task_token_audience,
    )
