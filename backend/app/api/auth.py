from html import escape

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse

from app.api.deps import get_services
from app.core.container import ServiceContainer

router = APIRouter(prefix="/auth", tags=["auth"])

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Authorization complete</title></head>
<body>
  <h1>Authorization complete</h1>
  <p>We are securely connected to {store}. Store setup continues in the background.</p>
  <p><strong>You can close this window.</strong></p>
</body>
</html>
"""


@router.get("/callback", response_class=HTMLResponse)
def oauth_callback(request: Request, services: ServiceContainer = Depends(get_services)) -> HTMLResponse:
    params = dict(request.query_params)
    code = params.get("code")
    shop = params.get("shop")
    if not code or not shop or not params.get("state") or not params.get("hmac"):
        raise HTTPException(status_code=400, detail="Invalid authorization callback request.")

    job = services.jobs.authorize(params["state"], code, shop, params)
    return HTMLResponse(_SUCCESS_PAGE.format(store=escape(job.store_domain or shop)))
