import uvicorn
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from contextlib import asynccontextmanager

from core.logging import get_api_logger_safe, configure_logging
from app.containers import AppContainer
from api.middleware.request_ids import RequestIdMiddleware
from api.middleware.error_handling import ErrorHandlingMiddleware, register_exception_handlers
from api.routers import orders, system, websocket
from api.schemas.responses import HealthResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = get_api_logger_safe("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    container = app.state.container
    settings = container.settings()
    logger.info("Starting Swap Router API server", environment=settings.environment.value)

    try:
        await container.db_manager().init()
        await container.dispatcher().start()
        logger.info("Order pipeline started")
    except Exception as e:
        logger.error("Failed to start order pipeline", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down Swap Router API server")
    try:
        await container.dispatcher().stop()
        await container.redis_client().aclose()
        await container.db_manager().shutdown()
        logger.info("Order pipeline stopped")
    except Exception as e:
        logger.error("Error during API shutdown", error=str(e))


def _build_uvicorn_log_config() -> dict:
    """Levels only; handlers stay as configure_logging wired them."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "loggers": {
            "uvicorn": {"level": "INFO"},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO"},
        },
    }


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Creates and configures the FastAPI application"""
    container = container or AppContainer()
    settings = container.settings()

    configure_logging(settings)

    app = FastAPI(
        title="Swap Router API",
        version=settings.version,
        description="Token swap order execution with best-venue routing and live status streaming.",
        lifespan=lifespan,
    )
    app.state.container = container

    # Use DI: shared Prometheus registry from container
    app.state.prom_registry = container.prometheus_registry()

    container.wire(modules=[
        "api.dependencies",
        "api.routers.orders",
        "api.routers.system",
        "api.routers.websocket",
    ])

    # Middleware order matters: the last one added is outermost
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    cors_origins = settings.api.cors_origins
    if settings.is_production() and "*" in cors_origins:
        raise ValueError(
            "CORS wildcard (*) not allowed in production. "
            "Specify exact origins in API__CORS_ORIGINS environment variable."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(orders.router)
    app.include_router(system.router)
    app.include_router(websocket.router)

    # Health check endpoint
    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    def health_check():
        return HealthResponse()

    # Prometheus metrics endpoint
    @app.get("/metrics", tags=["Monitoring"])
    def metrics():
        try:
            data = generate_latest(app.state.prom_registry)
            return Response(content=data, media_type=CONTENT_TYPE_LATEST)
        except Exception as e:
            logger.error("Failed to generate Prometheus metrics", error=str(e))
            return Response(content=b"", media_type=CONTENT_TYPE_LATEST)

    return app


def run():
    """Main function to run the API server"""
    app = create_app()
    settings = app.state.container.settings()

    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
        access_log=True,
        log_config=_build_uvicorn_log_config(),
        reload=False
    )


if __name__ == "__main__":
    run()
