import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from prometheus_client import Counter

from app.core.container import ServiceContainer
from app.core.errors import AuthenticationError, ConfigurationError, PermissionDenied
from app.core.security import CallerContext, bearer_token

task_auth_rejected_total = Counter("task_auth_rejected_total", "Task callbacks rejected by identity verification")


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_automation_key(
    authorization: str | None = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    server_key = services.settings.automation_api_key
    if not server_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Automation service is not configured on the server.",
        )
    provided = bearer_token(authorization)
    if not provided or not secrets.compare_digest(provided, server_key):
        raise AuthenticationError("Unauthorized.")


def get_caller(
    authorization: str | None = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> CallerContext:
    verifier = services.admin_token_verifier
    if verifier is None:
        raise ConfigurationError("End-user identity token verification is not configured.")
    claims = verifier.verify(bearer_token(authorization))
    return CallerContext.from_claims(claims)


def require_admin(caller: CallerContext = Depends(get_caller)) -> CallerContext:
    if not caller.is_admin:
        raise PermissionDenied("Admin access required")
    return caller


def require_task_identity(
    authorization: str | None = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    verifier = services.task_token_verifier
    if verifier is None:
        task_auth_rejected_total.inc()
        raise AuthenticationError("Task identity verification is not configured.")
    try:
        return verifier.verify(bearer_token(authorization))
    except AuthenticationError:
        task_auth_rejected_total.inc()
        raise
