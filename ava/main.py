"""FastAPI entrypoint: wires config, container, routes, assets and lifecycle hooks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from ava.api.http.assistant import router as assistant_router
from ava.api.http.health import router as health_router
from ava.api.http.index import router as index_router
from ava.api.stream.sse import router as sse_router
from ava.core.config import Settings
from ava.core.container import build_container
from ava.core.lifecycle import on_shutdown, on_startup
from ava.infra.observability.logger import get_logger, setup_logging
from ava.infra.storage.media_store import ASSETS_URL_PREFIX

access_logger = get_logger("uvicorn.access")
logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    container = build_container(settings)
    container.media_store.ensure_root()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        sweeper = on_startup(container)
        try:
            yield
        finally:
            await on_shutdown(container, sweeper)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (perf_counter() - start) * 1000
            query = f"?{request.url.query}" if request.url.query else ""
            path = f"{request.url.path}{query}"
            client_ip = request.client.host if request.client else "-"
            access_logger.info(
                '%s "%s %s" %s %.2fms',
                client_ip,
                request.method,
                path,
                status_code,
                duration_ms,
            )

    app.include_router(index_router)
    app.include_router(health_router)
    app.include_router(assistant_router)
    app.include_router(sse_router)
    app.mount(
        ASSETS_URL_PREFIX,
        StaticFiles(directory=container.media_store.root),
        name="assets",
    )

    return app


def main() -> None:
    """Command-line entry: serve the app with uvicorn, over TLS when certificates exist."""
    settings = Settings.from_env()
    app = create_app(settings)
    ssl_options: dict[str, str] = {}
    if settings.tls_cert_dir is not None:
        cert = settings.tls_cert_dir / "cert.pem"
        key = settings.tls_cert_dir / "key.pem"
        if cert.exists() and key.exists():
            ssl_options = {"ssl_certfile": str(cert), "ssl_keyfile": str(key)}
        else:
            logger.warning("TLS_CERT_DIR=%s has no cert.pem/key.pem; serving plain HTTP", settings.tls_cert_dir)
    logger.info("Listening on %s:%s tls=%s", settings.host, settings.port, bool(ssl_options))
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None, **ssl_options)


if __name__ == "__main__":
    main()
