"""
Pastebox - Main FastAPI application.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from fastapi.middleware.cors import CORSMiddleware

from pastebox.config import settings
from pastebox.routes import health, pastes
from pastebox.database import db  # Initialize database
from pastebox.errors import InternalFault, PasteError
from pastebox.security import SecurityHeadersMiddleware, text_response

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Pastebox",
    description="An ephemeral paste and small-blob store with short URLs",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SecurityHeadersMiddleware)

# Cross-origin uploads from scripts; reads are still subject to the hotlink check
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "PUT", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Delete-Token", "X-Paste-Views", "X-Paste-Expires-At", "X-Image-Dimensions"],
)

app.include_router(health.router)
app.include_router(pastes.router)


@app.exception_handler(PasteError)
async def paste_error_handler(request: Request, exc: PasteError):
    """Render paste errors as plain text with security headers."""
    if isinstance(exc, InternalFault):
        logger.error(f"Internal fault on {request.method} {request.url.path}: {exc!r}", exc_info=exc)
        detail = InternalFault.detail
    else:
        detail = exc.detail
    return text_response(detail, exc.status_code, headers={"Cache-Control": "no-store"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Last-resort 500; runs outside the middleware stack, so headers are set here."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}", exc_info=exc)
    return text_response(InternalFault.detail, 500, headers={"Cache-Control": "no-store"})


@app.on_event("startup")
async def startup_event():
    """Startup event handler."""
    logger.info("Pastebox application starting...")

    # Log database status
    if db.using_fallback:
        logger.warning("⚠️  DATABASE: Using IN-MEMORY storage (Redis not available)")
        logger.warning("   Data will NOT persist across server restarts!")
    else:
        logger.info("✅ DATABASE: Connected to Redis")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown event handler."""
    logger.info("Pastebox application shutting down...")


@app.get("/")
async def root():
    """Redirect to the project page."""
    return RedirectResponse(settings.REDIRECT_URL, status_code=302)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pastebox.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
