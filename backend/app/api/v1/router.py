"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    loads, offers, matching, settlements, admin_ops, notifications
)

router = APIRouter()

# Loads: detail, status, assignment, POD
router.include_router(loads.router)

# Offers
router.include_router(offers.load_requests_router)
router.include_router(offers.truck_requests_router)
router.include_router(offers.match_proposals_router)

# Matching
router.include_router(matching.router)

# Admin: settlements and ops
router.include_router(settlements.router)
router.include_router(admin_ops.router)

# Notifications
router.include_router(notifications.router)
