"""
Dependencies for authentication and access to the long-lived sync components.

Clients, the batch processor and the daily reconciler are built once in the
application lifespan and stored on ``app.state``; endpoints receive them via
these dependencies so tests can swap in fakes without touching the network.
"""
import secrets
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from lexsync import config
from lexsync.jobs.daily_sync import DailyReconciler
from lexsync.services.batch_processor import BatchProcessor
from lexsync.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


def _state_component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.error("Sync component not initialised", component=name)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available",
        )
    return component


def get_batch_processor(request: Request) -> BatchProcessor:
    return _state_component(request, "batch_processor")


def get_reconciler(request: Request) -> DailyReconciler:
    return _state_component(request, "reconciler")


def require_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Shared-secret bearer gate for the sync endpoints.

    Disabled when API_AUTH_TOKEN is unset. Missing header -> 403, wrong token -> 401.
    """
    expected = config.API_AUTH_TOKEN
    if not expected:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authenticated",
        )
    if not secrets.compare_digest(credentials.credentials, expected):
        logger.warning(
            "Authentication failed: invalid API token",
            token_prefix=credentials.credentials[:4] + "...",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
