# portfolio_api/main.py
import logging
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portfolio_api.core.errors import RateLimited, SubmissionInvalid, TransportError
from portfolio_api.core.mailer import MailDispatcher, build_dispatcher
from portfolio_api.core.rate_limit import RateLimiter, build_rate_limiter, client_identifier
from portfolio_api.core.settings import Settings, settings as default_settings
from portfolio_api.lib import responses
from portfolio_api.routers.contact import router as contact_router
from portfolio_api.routers.health import router as health_router
from portfolio_api.routers.site import router as site_router

log = logging.getLogger("uvicorn.error")


def _static_root(settings: Settings) -> Optional[Path]:
    if not settings.static_root:
        return None
    root = Path(settings.static_root).resolve()
    if not root.is_dir():
        log.warning(f"[main] STATIC_ROOT {root} is not a directory; static site disabled")
        return None
    return root


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(SubmissionInvalid)
    async def _invalid(request: Request, exc: SubmissionInvalid):
        return responses.validation_failed(exc.errors)

    @app.exception_handler(RateLimited)
    async def _limited(request: Request, exc: RateLimited):
        return responses.rate_limited(exc.decision)

    @app.exception_handler(TransportError)
    async def _transport(request: Request, exc: TransportError):
        log.error(f"[contact] {exc.kind} failure via {exc.transport}: {exc}")
        return responses.dispatch_failed(exc, settings.contact_fallback_email)

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        resp = responses.envelope(False, str(exc.detail), exc.status_code)
        if exc.headers:
            resp.headers.update(exc.headers)
        return resp


def _unhandled_response(request: Request, exc: Exception, settings: Settings) -> JSONResponse:
    if settings.is_production:
        log.error(f"[main] unhandled {type(exc).__name__} on {request.method} {request.url.path}")
        message = "Something went wrong on our end"
    else:
        log.exception(f"[main] unhandled error on {request.method} {request.url.path}", exc_info=exc)
        message = str(exc) or "Something went wrong on our end"
    return responses.envelope(False, message, 500)


def _install_access_log(app: FastAPI, settings: Settings) -> None:
    # outermost middleware: errors stop here so the server never re-raises them
    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            response = _unhandled_response(request, exc, settings)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if settings.is_development:
            log.debug(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
        else:
            ip = client_identifier(request, trust_proxy=settings.trust_proxy)
            agent = request.headers.get("user-agent", "-")
            log.info(
                f'{ip} "{request.method} {request.url.path}" {response.status_code} '
                f'{elapsed_ms:.1f}ms "{agent}"'
            )
        return response


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[MailDispatcher] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or default_settings
    log.setLevel(logging.DEBUG if settings.is_development else logging.INFO)

    app = FastAPI(title=settings.api_title)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
    _install_access_log(app, settings)
    _install_error_handlers(app, settings)

    app.state.settings = settings
    app.state.dispatcher = dispatcher or build_dispatcher(settings)
    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings)
    app.state.static_root = _static_root(settings)

    # Routers; the site catch-all must stay last
    app.include_router(contact_router)
    app.include_router(health_router)
    app.include_router(site_router)

    log.info(
        f"[main] environment={settings.environment} transport={app.state.dispatcher.transport} "
        f"rate_limit={'on' if app.state.rate_limiter.enabled else 'off'} "
        f"static_root={app.state.static_root}"
    )
    return app


app = create_app()
