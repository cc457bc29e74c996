from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.code import code_router
from routers.realtime import realtime_router
from schemas.code import HealthResponse
from context import ServiceContext
from constants import CORS_ORIGINS, LOG_LEVEL, LOG_FILE
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(context: Optional[ServiceContext] = None) -> FastAPI:
    """Build the application around a service context.

    The context is created here when not supplied and is opened and closed by
    the application lifespan.
    """
    context = context or ServiceContext()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.open()
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(lifespan=lifespan)
    app.state.context = context

    # Credentials cannot be combined with a wildcard origin
    allow_all = "*" in CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else CORS_ORIGINS,
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(code_router)
    app.include_router(realtime_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
