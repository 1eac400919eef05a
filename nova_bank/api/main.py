"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from nova_bank.api.errors import register_exception_handlers
from nova_bank.api.middleware import RequestIDMiddleware, MetricsMiddleware
from nova_bank.api.v1 import accounts, chat, insights, operations
from nova_bank.infrastructure.observability.logging import setup_logging
from nova_bank.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Nova Bank",
        description="Banking operations and AI assistant service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(accounts.router, prefix="/v1", tags=["accounts"])
    app.include_router(operations.router, prefix="/v1", tags=["operations"])
    app.include_router(insights.router, prefix="/v1", tags=["insights"])
    app.include_router(chat.router, prefix="/v1", tags=["chat"])

    return app


app = create_app()
