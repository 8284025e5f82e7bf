from contextlib import asynccontextmanager

from fastapi import FastAPI

from residuals.api.deps import get_history_service
from residuals.api.v1.router import v1_router
from residuals.core.config import get_settings
from residuals.core.logging import configure_logging
from residuals.core.middleware import RequestIdMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Flush queued audit records before the process exits.
    history = app.dependency_overrides.get(get_history_service, get_history_service)()
    history.wait_idle()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )
    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
