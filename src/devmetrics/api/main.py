"""FastAPI application factory."""
from fastapi import FastAPI

from devmetrics.api.routes import sync as sync_routes


def create_app() -> FastAPI:
    """Build and return the FastAPI app.

    Tables are created lazily by get_engine() on first use.
    """
    app = FastAPI(
        title="devmetrics API",
        description="Incremental GitHub activity sync",
        version="0.1.0",
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
