"""
InvoiceGen API Server

FastAPI application factory: middleware, error handlers, the operational
endpoints (status, health, metrics) and the API routers.
"""

import json
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.dependencies import rate_limit
from server.routes import (
    admin, auth, clients, credit_notes, invoice_number, invoices, payments, pricing,
    public, reminders, reports, settings, subscriptions, webhooks, whatsapp
)
from services.base_service import ServiceContext
from storage.database import Database
from utils.error_handling import ErrorManager, InvoiceGenError, RateLimitError
from utils.health_check import HealthCheckManager
from utils.logging_config import TraceContext
from utils.metrics import AppMetricsCollector
from utils.rate_limit import RateLimiter

logger = logging.getLogger("invoicegen.server")

ROUTERS = (
    auth, invoices, invoice_number, payments, credit_notes, clients, settings,
    public, webhooks, whatsapp, reports, reminders, pricing, subscriptions, admin,
)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def create_app(config: Dict[str, Any], database: Optional[Database] = None) -> FastAPI:
    """
    Create the FastAPI application for InvoiceGen.

    Args:
        config: Configuration dictionary
        database: Database to use; built from ``config`` when omitted

    Returns:
        FastAPI: Configured FastAPI application
    """
    app_config = config.get("app", {})
    app = FastAPI(
        title="InvoiceGen API",
        description="Invoicing, payments and reporting API",
        version=app_config.get("version", "1.0.0")
    )

    server_config = config.get("server", {})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.get("cors_origins", ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    database = database or Database.from_config(config)
    metrics_collector = AppMetricsCollector.get_instance()
    error_manager = ErrorManager.get_instance()

    app.state.config = config
    app.state.database = database
    app.state.context = ServiceContext.from_config(config)
    app.state.rate_limiter = RateLimiter.from_config(config.get("rate_limit", {}))
    app.state.health_manager = HealthCheckManager(config, database)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next) -> Response:
        """Trace and time every request."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        path = request.url.path
        start_time = time.time()

        with TraceContext(trace_id=request_id):
            try:
                with metrics_collector.track_request(path):
                    response = await call_next(request)
            except Exception as e:
                logger.error(f"Request error on {request.method} {path}: {e}")
                metrics_collector.track_request_failure(request.method, path, e)
                raise
            finally:
                metrics_collector.end_request(path)

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(f"{request.method} {path} -> {response.status_code} in {duration_ms:.1f}ms")
            response.headers["X-Request-ID"] = request_id
            return response

    @app.exception_handler(InvoiceGenError)
    async def invoicegen_error_handler(request: Request, exc: InvoiceGenError) -> JSONResponse:
        error_manager.handle_error(exc)
        metrics_collector.track_error(type(exc).__name__, exc.error_code)
        headers = exc.headers if isinstance(exc, RateLimitError) else None
        return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        metrics_collector.track_error("RequestValidationError", "ERR_VALIDATION")
        return JSONResponse(
            status_code=400,
            content={"error": _validation_message(exc), "error_code": "ERR_VALIDATION"},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        error = error_manager.handle_error(exc)
        metrics_collector.track_error(type(exc).__name__, error.error_code)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "error_code": error.error_code},
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "InvoiceGen API",
            "version": app.version,
            "status": "running",
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/status")
    async def status():
        """Uptime style status with request counters."""
        return {
            "status": "operational",
            "version": app.version,
            "environment": config.get("environment", "development"),
            "errors": dict(error_manager.error_counts),
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/health", dependencies=[Depends(rate_limit("health"))])
    def health_check():
        """Health report; 500 when a critical check fails."""
        report = app.state.health_manager.run_all_checks()
        status_code = 500 if report["status"] == "error" else 200
        return JSONResponse(content=report, status_code=status_code)

    @app.get("/metrics")
    async def get_metrics(format: str = Query("json", description="Output format (json or prometheus)")):
        """
        Get system metrics in requested format.

        Args:
            format: Output format (json or prometheus)

        Returns:
            Response with metrics data
        """
        try:
            if format.lower() == "prometheus":
                return Response(content=metrics_collector.export_prometheus(), media_type="text/plain")
            return JSONResponse(content=json.loads(metrics_collector.export_json()))
        except (TypeError, ValueError) as e:
            logger.error(f"Error exporting metrics: {e}")
            raise HTTPException(status_code=500, detail=f"Error exporting metrics: {str(e)}")

    for module in ROUTERS:
        app.include_router(module.router)

    logger.info(f"InvoiceGen API created with {len(ROUTERS)} routers")
    return app
