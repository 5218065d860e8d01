# src/storagehub/api/router.py

from fastapi import APIRouter
from storagehub.api.v1 import storage

# The main router for API v1
router = APIRouter(prefix="/api/v1")

# ===================================================================
# Storage & Tenant Data Routes
# ===================================================================

router.include_router(storage.router, prefix="/storages", tags=["Storages"])
