"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from peerpool_ledger.api.dependencies import get_engine
from peerpool_ledger.api.error_handlers import register_error_handlers
from peerpool_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from peerpool_ledger.api.v1 import loans, pool, users
from peerpool_ledger.infrastructure.database.models import Base
from peerpool_ledger.infrastructure.database.session import engine as db_engine
from peerpool_ledger.infrastructure.observability.logging import setup_logging
from peerpool_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ledger state and notification log tables, then restore the engine from them
    Base.metadata.create_all(bind=db_engine)
    get_engine()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Peer-Pool Lending Ledger",
        description="Pooled micro-lending with repayment-driven credit scores",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_error_handlers(app)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(pool.router, prefix="/v1", tags=["pool"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(users.router, prefix="/v1", tags=["users"])

    return app


app = create_app()
