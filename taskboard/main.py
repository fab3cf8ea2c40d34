"""
Task Board - FastAPI Application

Serves the task board core over HTTP:
- Task lifecycle and comments
- Dashboard, progress and team statistics (read-only)
- AI suggestion review (accept / dismiss)
- Activity feed, users, calendar and system settings

Run for development with:  python -m taskboard.main
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__
from .api import router as taskboard_router
from .config import DATA_DIR, STORE_BACKEND
from .errors import ValidationError
from .models import utcnow
from .schema import issues_from_errors
from .services import get_services

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("taskboard")

# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title="School Task Board",
    description="Task management core for school operations staff",
    version=__version__
)

app.include_router(taskboard_router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies/parameters like core validation failures (400)."""
    issues = issues_from_errors(exc.errors())
    return JSONResponse(status_code=400, content={"detail": ValidationError(issues).to_dict()})


# -----------------------------------------------------------------------------
# API Endpoints - Health
# -----------------------------------------------------------------------------
@app.get("/")
async def root():
    return {
        "service": "School Task Board",
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "components": {
            "api": "operational",
            "store": STORE_BACKEND,
            "data_dir": DATA_DIR.exists(),
        },
        "version": __version__,
    }


@app.on_event("startup")
async def startup_event():
    logger.info(f"Task Board v{__version__} starting (store={STORE_BACKEND})")


@app.on_event("shutdown")
async def shutdown_event():
    """Flush pending notifications on shutdown."""
    logger.info("Task Board shutting down...")
    try:
        get_services().shutdown()
    except Exception as e:
        logger.error(f"Error stopping notification workers: {e}")


# -----------------------------------------------------------------------------
# Main Entry Point (for development)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
