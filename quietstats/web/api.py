from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from quietstats.core.errors import QuietstatsError, ValidationError
from quietstats.web.context import IngestContext
from quietstats.web.errors import error_response
from quietstats.web.middleware import WebSecurityMiddleware, client_ip
from quietstats.web.models import ErasureResponse, EventIn, EventResponse, SiteCreateRequest, SiteResponse, SiteUpdateRequest


def _trace_id(request: Request) -> str:
    return getattr(getattr(request, "state", None), "trace_id", "web")


def create_app(ctx: IngestContext) -> FastAPI:
    web_cfg = ctx.cfg.web
    if any(o == "*" for o in web_cfg.allowed_origins):
        raise ValueError("Wildcard CORS origins are not allowed.")
    app = FastAPI(
        title="quietstats API",
        version="0.1.0",
        description="Privacy-first analytics API",
        docs_url="/docs" if web_cfg.docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if web_cfg.docs_enabled else None,
    )
    app.state.ctx = ctx
    reporter = ctx.reporter
    logger = ctx.logger

    app.middleware("http")(
        WebSecurityMiddleware(
            web_cfg=web_cfg.model_dump(),
            rate_limiter=ctx.rate_limiter,
            max_request_bytes=min(int(web_cfg.max_request_bytes), int(ctx.cfg.pipeline.max_payload_bytes)),
            reporter=reporter,
            logger=logger,
        )
    )

    @app.exception_handler(QuietstatsError)
    async def quietstats_error_handler(request: Request, exc: QuietstatsError):
        reporter.write_error(exc, trace_id=_trace_id(request), subsystem="web", internal_exc=None)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError("Invalid request.", errors=[e.get("msg") for e in exc.errors()])
        reporter.write_error(err, trace_id=_trace_id(request), subsystem="web", internal_exc=None)
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        err = reporter.report_exception(exc, trace_id=_trace_id(request), subsystem="web")
        if logger:
            logger.error(f"Unhandled error for {request.method} {request.url.path}: {exc}")
        return error_response(err)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "quietstats API"

    @app.get("/health")
    async def health():
        return {"status": "ok", "sweeper": ("running" if ctx.sweeper.is_running() else "idle")}

    # ---- sites ----
    @app.post("/sites")
    def register_site(req: SiteCreateRequest):
        site = ctx.sites.register(
            site_id=req.site_id,
            name=req.name,
            domain=req.domain,
            settings=req.settings,
            retention_days=req.retention_days,
        )
        resp = SiteResponse(site=site.public(), api_key=ctx.sites.reveal_api_key(site))
        return resp.model_dump(by_alias=True)

    @app.get("/sites/{site_id}")
    def get_site(site_id: str):
        return ctx.sites.get(site_id)

    @app.patch("/sites/{site_id}")
    def update_site(site_id: str, req: SiteUpdateRequest):
        site = ctx.sites.update(site_id, req.model_dump(exclude_unset=True))
        return SiteResponse(site=site.public()).model_dump(by_alias=True, exclude_none=True)

    # ---- events ----
    @app.post("/events")
    def track_event(req: EventIn, request: Request, x_site_id: Optional[str] = Header(default=None)):
        if not x_site_id:
            raise ValidationError("Site ID is required", field="X-Site-ID")
        site = ctx.sites.require(x_site_id)
        ip = None
        if ctx.sites.tracks_ip(site):
            ip = client_ip(request, peer_fallback=False)
        stored = ctx.pipeline.ingest(
            trace_id=_trace_id(request),
            site_id=site.site_id,
            event_type=req.type,
            properties=req.properties,
            timestamp=req.timestamp,
            session_id=req.session_id,
            ip=ip,
            user_agent=request.headers.get("user-agent"),
        )
        return EventResponse(event=stored.to_wire()).model_dump()

    @app.get("/insights/{site_id}")
    def insights(
        site_id: str,
        start_date: Optional[str] = Query(default=None, alias="startDate"),
        end_date: Optional[str] = Query(default=None, alias="endDate"),
        event_types: Optional[str] = Query(default=None, alias="eventTypes"),
    ):
        site = ctx.sites.require(site_id)
        types = event_types.split(",") if event_types else None
        return ctx.insights.get_insights(site.site_id, start=start_date, end=end_date, event_types=types)

    @app.delete("/events/{site_id}")
    def erase_events(
        site_id: str,
        request: Request,
        user_id: Optional[str] = Query(default=None, alias="userId"),
        session_id: Optional[str] = Query(default=None, alias="sessionId"),
    ):
        deleted = ctx.erasure.erase(site_id=site_id, user_id=user_id, session_id=session_id, trace_id=_trace_id(request))
        return ErasureResponse(deleted=deleted).model_dump()

    return app
