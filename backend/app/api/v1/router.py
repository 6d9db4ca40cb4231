"""API v1 router aggregation."""
from fastapi import APIRouter

from app.api.v1.endpoints import videos

api_router = APIRouter()

# Catalog resolution and delivery live under /videos
api_router.include_router(videos.router, prefix="/videos", tags=["catalog", "delivery"])
