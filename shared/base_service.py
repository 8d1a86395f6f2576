"""
FastAPI scaffold shared by the ability service.

Subclasses add routes in their constructor and override ``start``,
``stop`` and ``_check_dependencies``. The scaffold provides request
correlation, Prometheus metrics, ``/health``, ``/metrics`` and JSON error
replies for ``AccessLayerException``.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException
from shared.logging import configure_logging, get_logger, set_request_id, clear_context, request_id_var
from shared.metrics import get_metrics_collector

VERSION = "1.0.0"


class BaseService:
    """FastAPI application with correlation, metrics and health endpoints."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)

        # One registry per service instance, so tests can build many services.
        self.metrics = get_metrics_collector(service_name, CollectorRegistry())
        self.started_at = time.time()

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description="Ability-based authorization",
            version=VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url=None,
            lifespan=self._lifespan,
        )
        self._install_middleware()
        self._install_error_handlers()
        self._install_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    def _install_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate(request: Request, call_next):
            request_id = set_request_id(request.headers.get("x-request-id"))
            started = time.perf_counter()

            try:
                response = await call_next(request)
            finally:
                clear_context()

            elapsed = time.perf_counter() - started
            self.metrics.record_http_request(request.method, request.url.path, response.status_code, elapsed)
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(elapsed * 1000, 2),
                request_id=request_id
            )

            response.headers["x-request-id"] = request_id
            return response

    def _install_error_handlers(self):
        @self.app.exception_handler(AccessLayerException)
        async def access_layer_error(request: Request, exc: AccessLayerException):
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log("Request failed", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)

            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(request_id_var.get()).model_dump()
            )

        @self.app.exception_handler(Exception)
        async def unexpected_error(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error(type(exc).__name__)

            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}
            )

    def _install_routes(self):
        @self.app.get("/health")
        async def health():
            """Service health; 503 when any dependency is failing."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)

            body = {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": round(time.time() - self.started_at, 3),
                "dependencies": dependencies,
                "version": VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
            return JSONResponse(status_code=200 if status == "ok" else 503, content=body)

        @self.app.get("/metrics")
        async def metrics():
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    async def _check_dependencies(self) -> Dict[str, str]:
        return {}

    async def start(self):
        """Connect backends. Override in subclasses."""

    async def stop(self):
        """Release backends. Override in subclasses."""

    def run(self):
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
