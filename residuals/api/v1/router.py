from fastapi import APIRouter

from residuals.api.v1.health import router as health_router
from residuals.api.v1.events import router as events_router
from residuals.api.v1.deals import router as deals_router
from residuals.api.v1.payouts import router as payouts_router
from residuals.api.v1.sync import router as sync_router
from residuals.api.v1.admin import router as admin_router
from residuals.api.v1.history import router as history_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(history_router, tags=["history"])

# ------------------------------------------------------------------
# RESIDUALS WORKFLOW
# ------------------------------------------------------------------
v1_router.include_router(events_router, tags=["events"])
v1_router.include_router(deals_router, tags=["deals"])
v1_router.include_router(payouts_router, tags=["payouts"])

# ------------------------------------------------------------------
# EXTERNAL SYNC / MAINTENANCE
# ------------------------------------------------------------------
v1_router.include_router(sync_router, tags=["sync"])
v1_router.include_router(admin_router, tags=["admin"])
