import logging

from fastapi import FastAPI

from content_approval import __version__
from content_approval.api.v1.endpoints import approval_endpoints
from content_approval.core.logging_config import configure_logging
from content_approval.core.settings import settings
from content_approval.db.session import close_database_manager

configure_logging(settings.log_level)

# FastAPI instance
app = FastAPI(
    title="Content Approval Service",
    version=__version__,
    description="Moderation queue for machine-generated content.",
)

app.include_router(approval_endpoints.router, prefix="/api/v1", tags=["Content Approval"])


@app.get("/health", tags=["General"])
async def health_check():
    """Health check endpoint for monitoring and connectivity testing."""
    return {
        "status": "healthy",
        "service": "content-approval",
        "version": __version__,
    }


@app.on_event("shutdown")
async def shutdown_event():
    """Release the content store client and database connections on shutdown."""
    logging.info("Content approval service shutting down")
    await approval_endpoints.close_workflow_engine()
    close_database_manager()


logging.getLogger(__name__).info("Content approval service initialized")
