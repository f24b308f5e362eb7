"""Error taxonomy shared by the orchestrator services and HTTP layer.

Each error carries the HTTP status it maps to at the boundary. Validation,
authentication and quota errors never reach the state machine; transient
errors are retried close to the platform call; anything else that escapes a
population run turns the job into ``failed``.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class OrchestratorError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "ORCHESTRATOR_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrchestratorError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class AuthenticationError(OrchestratorError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class PermissionDenied(OrchestratorError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class QuotaExceeded(OrchestratorError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "QUOTA_EXCEEDED"


class JobNotFound(OrchestratorError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "JOB_NOT_FOUND"


class Conflict(OrchestratorError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class ConfigurationError(OrchestratorError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFIGURATION_ERROR"


class TransientExternalError(OrchestratorError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "TRANSIENT_EXTERNAL_ERROR"


class FatalJobError(OrchestratorError):
    code = "FATAL_JOB_ERROR"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrchestratorError)
    async def _orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(err.get("msg", "validation error") for err in exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": message, "code": ValidationError.code},
        )
