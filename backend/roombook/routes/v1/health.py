# backend/roombook/routes/v1/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter

from ...core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    return {
        "status": "healthy",
        "service": "roombook",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
