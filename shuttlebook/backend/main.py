"""FastAPI application entry point."""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from shuttlebook.backend.core.config import settings
from shuttlebook.backend.core.errors import ShuttleBookError
from shuttlebook.backend.core.logging import setup_logging
from shuttlebook.backend.db.init_db import init_db
from shuttlebook.backend.api import hotels, trips, bookings, trip_instances, reports


# Setup logging
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Initialize database
init_db()

# Create FastAPI app
app = FastAPI(
    title="Shuttle Booking API",
    description="Seat allocation and trip lifecycle for hotel shuttles",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShuttleBookError)
async def shuttlebook_error_handler(request: Request, exc: ShuttleBookError):
    """Translate domain errors into JSON responses."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
    )


# Include routers
app.include_router(hotels.router, prefix="/api", tags=["hotels"])
app.include_router(trips.router, prefix="/api", tags=["trips"])
app.include_router(bookings.router, prefix="/api", tags=["bookings"])
app.include_router(trip_instances.router, prefix="/api", tags=["trip-instances"])
app.include_router(reports.router, prefix="/api", tags=["reports"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Shuttle Booking API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
