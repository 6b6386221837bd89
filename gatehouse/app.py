from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import RedirectResponse

from gatehouse.api.binding import BoundRequest, bind_request, commit
from gatehouse.api.error_handling import (
    error_response,
    register_exception_handlers,
    service_error_response,
)
from gatehouse.api.routes import router
from gatehouse.logging import get_logger, set_correlation_id
from gatehouse.service.errors import ServiceError
from gatehouse.service.runtime import Runtime, get_runtime
from gatehouse.service.validator import ValidationResult
from gatehouse.storage.errors import SessionStoreError

logger = get_logger(__name__)

__version__ = "0.1.0"

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    runtime = get_runtime()
    logger.info(
        "gateway_started",
        login_version=runtime.settings.login_version,
        sso_enabled=runtime.settings.oidc_enabled,
    )

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Gatehouse", version=__version__, lifespan=lifespan)


def _is_exempt(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)


@app.middleware("http")
async def require_session(request: Request, call_next):
    """Gate every non-exempt path on a valid, directory-confirmed session.

    Unauthenticated API calls get a 401 envelope; browser navigation is
    redirected to the active provider's login page. A forced logout clears
    the session and identity cookies on that response.
    """
    runtime = get_runtime()
    settings = runtime.settings
    if _is_exempt(request.url.path, settings.exempt_prefixes() + (settings.login_page_path,)):
        return await call_next(request)

    try:
        bound = await bind_request(request, runtime)
        result = await runtime.gateway.is_authenticated(bound.ctx)
        if result.authenticated:
            request.state.identity = result.identity
        else:
            return await _reject(request, runtime, bound, result)
    except ServiceError as exc:
        return service_error_response(request, exc)
    except SessionStoreError as exc:
        logger.error("session_store_error", path=request.url.path, message=exc.message)
        return error_response(503, "session store unavailable", code="upstream_unavailable")
    return await call_next(request)


async def _reject(
    request: Request, runtime: Runtime, bound: BoundRequest, result: ValidationResult
) -> Response:
    login_url = runtime.gateway.login_redirect_url(bound.ctx)
    path = request.url.path
    if path == API_PREFIX or path.startswith(API_PREFIX + "/"):
        response: Response = error_response(
            401, "log out", {"reason": result.reason, "login_url": login_url}, code="unauthorized"
        )
    else:
        response = RedirectResponse(login_url, status_code=302)
    if result.forced_logout:
        await commit(response, runtime, bound, result.session, result.cookies)
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith(("/auth/", API_PREFIX + "/")):
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID.

    Taken from X-Request-ID when the client supplies one, generated
    otherwise, and echoed back in the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)
