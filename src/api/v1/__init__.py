"""
API v1 Router Module - Try-On Service

All v1 endpoints are prefixed with /api/v1/

Primary endpoint: POST /api/v1/try-on
- Multipart upload of subject + overlay, PNG response

Supporting endpoints:
- /api/v1/metrics - Prometheus scrape target
"""

from fastapi import APIRouter

from src.api.v1.tryon import router as tryon_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(tryon_router, prefix="/try-on", tags=["try-on"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
