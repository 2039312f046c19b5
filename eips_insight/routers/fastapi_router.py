from fastapi import APIRouter

# Aggregate sub-routers for the single include in main.py
from .routes_analytics import router as analytics_router
from .routes_explore import router as explore_router
from .routes_governance import router as governance_router
from .routes_proposals import router as proposals_router

router = APIRouter()
router.include_router(proposals_router)
router.include_router(governance_router)
router.include_router(explore_router)
router.include_router(analytics_router)
