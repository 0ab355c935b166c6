from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recordroulette.core.config import Settings, get_settings
from recordroulette.core.metrics import metrics_response, observe_http_request
from recordroulette.core.middleware import (
    apply_security_headers,
    build_request_id,
    log_request_completion,
    now_ts,
    request_id_ctx,
    route_template,
)
from recordroulette.core.otel import setup_otel
from recordroulette.db.session import Database
from recordroulette.routers.auth import router as auth_router
from recordroulette.routers.health import router as health_router
from recordroulette.routers.me import router as me_router
from recordroulette.routers.spotify import router as spotify_router


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    database = database or Database(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        otel_shutdown = app.state.otel_shutdown
        if otel_shutdown is not None:
            otel_shutdown()
        app.state.database.dispose()

    app = FastAPI(title="RecordRoulette API", version=settings.VERSION, lifespan=lifespan)
    app.state.database = database

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers_and_request_context(request, call_next):  # type: ignore[no-untyped-def]
        request_id = build_request_id(request, header_name=settings.REQUEST_ID_HEADER)
        token = request_id_ctx.set(request_id)
        start_ts = now_ts()
        method = request.method
        path = request.url.path
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response, settings=settings)
            return response
        finally:
            duration_ms = int((now_ts() - start_ts) * 1000)
            log_request_completion(
                request_id=request_id,
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
            )
            if settings.ENABLE_PROMETHEUS_METRICS:
                observe_http_request(
                    method=method,
                    path=route_template(request),
                    status_code=status_code,
                    duration_ms=duration_ms,
                )
            request_id_ctx.reset(token)

    if settings.ENABLE_PROMETHEUS_METRICS:
        app.add_api_route(
            settings.PROMETHEUS_METRICS_PATH,
            metrics_response,
            methods=["GET"],
            include_in_schema=False,
        )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(me_router)
    app.include_router(spotify_router)

    otel = setup_otel(app=app, engine=database.engine, settings=settings)
    app.state.otel_tracing_enabled = otel.enabled
    app.state.otel_tracing_reason = otel.reason
    app.state.otel_shutdown = otel.shutdown
    return app


app = create_app()
