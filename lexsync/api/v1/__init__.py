"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter, Depends
from lexsync.api.deps import require_api_token
from .endpoints import shipments, sync, sync_logging

api_router = APIRouter(dependencies=[Depends(require_api_token)])

api_router.include_router(
    shipments.router,
    tags=["shipments"]
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["sync"]
)

api_router.include_router(
    sync_logging.router,
    prefix="/logging",
    tags=["logging"]
)
