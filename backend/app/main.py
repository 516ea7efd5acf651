"""FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import alerts, holdpoints, itp, lots, public_holdpoints

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create app
app = FastAPI(
    title="SiteQA Quality Workflow",
    version="1.0.0",
    description="Backend API for ITPs, hold points and lot conformance"
)

# Production safety checks.
if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY == "change-me":
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"] if settings.ENV.lower() == "production" else ["*"],
)

app.add_exception_handler(DomainError, domain_error_handler)

# Include routers (public first: its paths overlap the authenticated prefix)
app.include_router(public_holdpoints.router, prefix="/api/v1")
app.include_router(itp.router, prefix="/api/v1")
app.include_router(lots.router, prefix="/api/v1")
app.include_router(holdpoints.router, prefix="/api/v1")
app.include_router(alerts.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "SiteQA Quality Workflow API",
        "version": "1.0.0",
        "docs": "/docs"
    }
