import secrets

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.security.utils import get_authorization_scheme_param

from homedispatch.infra.metrics import Metrics

router = APIRouter()


def _authorized(request: Request, token: str | None) -> bool:
    if not token:
        return True
    scheme, supplied = get_authorization_scheme_param(request.headers.get("Authorization"))
    return scheme.lower() == "bearer" and secrets.compare_digest(supplied, token)


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> Response:
    dispatch_metrics: Metrics | None = getattr(request.app.state, "metrics", None)
    if dispatch_metrics is None or not dispatch_metrics.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")

    app_settings = getattr(request.app.state, "app_settings", None)
    if not _authorized(request, getattr(app_settings, "metrics_token", None)):
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload, content_type = dispatch_metrics.render()
    return Response(content=payload, media_type=content_type)
