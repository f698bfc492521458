"""
Offer API Endpoints.

Load requests (carrier -> shipper), truck requests (shipper -> carrier)
and match proposals (dispatcher -> carrier) share one shape: create,
list, respond.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Awaitable, Callable, List, Optional

from backend.app.db.session import get_db
from backend.app.models.offer_enums import RequestStatus
from backend.app.schemas.load import AssignmentResponse
from backend.app.schemas.offers import OfferCreate, OfferRespond, OfferResponse, OfferDecisionResponse
from backend.app.core.dependencies import get_current_user
from backend.app.domain.assignment.offers import (
    LOAD_REQUEST, TRUCK_REQUEST, MATCH_PROPOSAL, OfferKind, OfferService
)


def _decision(result) -> OfferDecisionResponse:
    assignment = None
    if result.assignment is not None:
        a = result.assignment
        assignment = AssignmentResponse(
            load_id=a.load_id,
            truck_id=a.truck_id,
            trip_id=a.trip_id,
            tracking_slug=a.tracking_slug,
            cancelled_offers=a.cancelled_offers,
            side_effects=a.side_effects,
            notifications_sent=a.notifications_sent,
        )
    return OfferDecisionResponse(
        offer_id=result.offer_id,
        status=result.status,
        message=result.message,
        idempotent=result.idempotent,
        assignment=assignment,
        notifications_sent=result.notifications_sent,
    )


def build_offer_router(prefix: str, tag: str, kind: OfferKind, create: Callable[..., Awaitable]) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
    async def create_offer(
        body: OfferCreate,
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        return await create(
            db,
            current_user,
            body.load_id,
            body.truck_id,
            notes=body.notes,
            proposed_rate=body.proposed_rate,
            expires_in_hours=body.expires_in_hours,
        )

    @router.get("", response_model=List[OfferResponse])
    async def list_offers(
        offer_status: Optional[RequestStatus] = Query(None, alias="status"),
        load_id: Optional[int] = Query(None),
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        return await OfferService.list_offers(
            db, kind, current_user, status=offer_status, load_id=load_id, limit=limit, offset=offset
        )

    @router.post("/{offer_id}/respond", response_model=OfferDecisionResponse)
    async def respond_to_offer(
        body: OfferRespond,
        offer_id: int = Path(..., description="Offer ID"),
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        """
        Approve (accept) or reject.

        Approval assigns the truck; the response carries the assignment and
        each side-effect outcome.
        """
        result = await OfferService.respond(
            db, kind, offer_id, body.action, current_user, response_notes=body.response_notes
        )
        return _decision(result)

    return router


load_requests_router = build_offer_router(
    "/load-requests", "Load Requests", LOAD_REQUEST, OfferService.create_load_request
)
truck_requests_router = build_offer_router(
    "/truck-requests", "Truck Requests", TRUCK_REQUEST, OfferService.create_truck_request
)
match_proposals_router = build_offer_router(
    "/match-proposals", "Match Proposals", MATCH_PROPOSAL, OfferService.create_match_proposal
)
