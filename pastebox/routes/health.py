"""
Health check route.
"""
from fastapi import APIRouter
from pastebox.models import HealthCheck
from pastebox.database import db

router = APIRouter()


@router.get("/api/healthz", response_model=HealthCheck)
def health_check() -> HealthCheck:
    """
    Health check endpoint.
    Returns 200 with ok=true if application and backing store are healthy.
    """
    is_healthy = db.is_healthy()
    return HealthCheck(ok=is_healthy)
