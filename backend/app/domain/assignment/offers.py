"""
Offer workflows: load requests, truck requests and match proposals.

- Load request: a carrier asks for a load with its truck; the shipper answers
- Truck request: a shipper asks for a truck; the carrier answers
- Match proposal: a dispatcher suggests a truck; the carrier answers

Approval always goes through AssignmentCoordinator.assign(). Offers
expire lazily: an expired offer is marked EXPIRED when someone tries to
answer it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    InvalidStateError,
    ResourceNotFoundError,
)
from backend.app.core.guards import can_approve, can_propose, can_request_truck, is_admin
from backend.app.core.timeutils import is_past
from backend.app.db.locking import is_lock_conflict, lock_row
from backend.app.domain.assignment.coordinator import (
    AssignmentCoordinator,
    AssignmentResult,
    AssignmentSource,
)
from backend.app.domain.assignment.side_effects import Notice, send_notices
from backend.app.domain.loads.state_machine import ASSIGNABLE_STATUSES
from backend.app.models.enums import UserRole
from backend.app.models.load import Load
from backend.app.models.load_enums import PostingStatus
from backend.app.models.load_request import LoadRequest
from backend.app.models.match_proposal import MatchProposal
from backend.app.models.notification import NotificationType
from backend.app.models.offer_enums import RequestStatus, ResponseAction
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.models.truck_request import TruckRequest
from backend.app.services.load_events import LoadEventType, record_load_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OfferKind:
    """Everything that differs between the three offer types."""
    model: Type
    noun: str
    approve_action: ResponseAction
    source: str
    created_event: str
    approved_event: str
    rejected_event: str
    received_notice: NotificationType
    approved_notice: NotificationType
    rejected_notice: NotificationType
    forbidden_message: str
    # (actor, load, truck) -> may this actor answer?
    may_respond: Callable[[dict, Load, Truck], bool]


def _shipper_may_respond(actor: dict, load: Load, truck: Truck) -> bool:
    if is_admin(actor):
        return True
    return actor.get("role") == UserRole.SHIPPER.value and actor.get("organization_id") == load.shipper_id


def _carrier_may_respond(actor: dict, load: Load, truck: Truck) -> bool:
    return can_approve(actor, truck.carrier_id)


LOAD_REQUEST = OfferKind(
    model=LoadRequest,
    noun="Request",
    approve_action=ResponseAction.APPROVE,
    source=AssignmentSource.LOAD_REQUEST,
    created_event=LoadEventType.LOAD_REQUEST_CREATED,
    approved_event=LoadEventType.LOAD_REQUEST_APPROVED,
    rejected_event=LoadEventType.LOAD_REQUEST_REJECTED,
    received_notice=NotificationType.LOAD_REQUEST_RECEIVED,
    approved_notice=NotificationType.LOAD_REQUEST_APPROVED,
    rejected_notice=NotificationType.LOAD_REQUEST_REJECTED,
    forbidden_message="Only the shipper who owns the load can respond",
    may_respond=_shipper_may_respond,
)

TRUCK_REQUEST = OfferKind(
    model=TruckRequest,
    noun="Request",
    approve_action=ResponseAction.APPROVE,
    source=AssignmentSource.TRUCK_REQUEST,
    created_event=LoadEventType.TRUCK_REQUEST_CREATED,
    approved_event=LoadEventType.TRUCK_REQUEST_APPROVED,
    rejected_event=LoadEventType.TRUCK_REQUEST_REJECTED,
    received_notice=NotificationType.TRUCK_REQUEST_RECEIVED,
    approved_notice=NotificationType.TRUCK_REQUEST_APPROVED,
    rejected_notice=NotificationType.TRUCK_REQUEST_REJECTED,
    forbidden_message="Only the carrier that owns the truck can respond",
    may_respond=_carrier_may_respond,
)

MATCH_PROPOSAL = OfferKind(
    model=MatchProposal,
    noun="Proposal",
    approve_action=ResponseAction.ACCEPT,
    source=AssignmentSource.MATCH_PROPOSAL,
    created_event=LoadEventType.MATCH_PROPOSAL_CREATED,
    approved_event=LoadEventType.MATCH_PROPOSAL_ACCEPTED,
    rejected_event=LoadEventType.MATCH_PROPOSAL_REJECTED,
    received_notice=NotificationType.MATCH_PROPOSAL_RECEIVED,
    approved_notice=NotificationType.MATCH_PROPOSAL_ACCEPTED,
    rejected_notice=NotificationType.MATCH_PROPOSAL_REJECTED,
    forbidden_message="You do not have permission to respond to this proposal",
    may_respond=_carrier_may_respond,
)


@dataclass
class OfferResponse:
    offer_id: int
    status: RequestStatus
    message: str
    idempotent: bool = False
    assignment: Optional[AssignmentResult] = None
    notifications_sent: bool = True


def _expiry(expires_in_hours: Optional[int]) -> datetime:
    hours = expires_in_hours or settings.offer_expiry_hours
    return datetime.utcnow() + timedelta(hours=hours)


def _route(load: Load) -> str:
    return f"{load.pickup_city} → {load.delivery_city}"


async def _load_and_truck(db: AsyncSession, load_id: int, truck_id: int):
    load = await db.get(Load, load_id)
    if load is None:
        raise ResourceNotFoundError("Load", load_id)
    truck = await db.get(Truck, truck_id)
    if truck is None:
        raise ResourceNotFoundError("Truck", truck_id)
    return load, truck


async def _has_active_posting(db: AsyncSession, truck_id: int) -> bool:
    result = await db.execute(
        select(TruckPosting.id).where(
            TruckPosting.truck_id == truck_id,
            TruckPosting.status == PostingStatus.ACTIVE,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _ensure_no_pending(db: AsyncSession, kind: OfferKind, load_id: int, truck_id: int) -> None:
    model = kind.model
    result = await db.execute(
        select(model.id).where(
            model.load_id == load_id,
            model.truck_id == truck_id,
            model.status == RequestStatus.PENDING,
        ).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        raise ConflictError(f"A pending {kind.noun.lower()} already exists for this load-truck pair")


def _ensure_load_open(load: Load, message: str) -> None:
    if load.status not in ASSIGNABLE_STATUSES:
        raise InvalidStateError(message, details={"currentStatus": load.status.value})
    if load.assigned_truck_id is not None:
        raise InvalidStateError(
            "Load is already assigned to a truck",
            details={"currentStatus": load.status.value},
        )


async def _store_offer(
    db: AsyncSession,
    kind: OfferKind,
    offer,
    actor: dict,
    notice: Notice,
):
    db.add(offer)
    await db.flush()
    await record_load_event(
        db,
        offer.load_id,
        kind.created_event,
        description=f"{offer.kind_label} {offer.id} created for truck {offer.truck_id}",
        user_id=actor.get("user_id"),
        metadata={"offer_id": offer.id, "truck_id": offer.truck_id},
    )
    await db.commit()
    await db.refresh(offer)

    logger.info("%s %s created for load %s", offer.kind_label, offer.id, offer.load_id)
    notice.metadata.setdefault("offer_id", offer.id)
    if not await send_notices(db, [notice], actor_id=actor.get("user_id")):
        await db.refresh(offer)
    return offer


class OfferService:

    @staticmethod
    async def create_load_request(
        db: AsyncSession,
        actor: dict,
        load_id: int,
        truck_id: int,
        notes: Optional[str] = None,
        proposed_rate: Optional[Decimal] = None,
        expires_in_hours: Optional[int] = None,
    ) -> LoadRequest:
        """
        A carrier asks for a load with one of its posted trucks.

        Raises:
            InsufficientPermissionsError: Not a carrier, or not its truck
            InvalidStateError: Load not open, truck not posted
            ConflictError: A pending request already exists for the pair
        """
        if actor.get("role") != UserRole.CARRIER.value:
            raise InsufficientPermissionsError("Only carriers can request loads")
        if actor.get("organization_id") is None:
            raise InvalidStateError("Carrier must belong to an organization")

        load, truck = await _load_and_truck(db, load_id, truck_id)
        _ensure_load_open(load, f"Load is not available (status: {load.status.value})")

        if truck.carrier_id != actor.get("organization_id"):
            raise InsufficientPermissionsError("You can only request loads for your own trucks")
        if not await _has_active_posting(db, truck.id):
            raise InvalidStateError("Truck must have an active posting to request loads")
        await _ensure_no_pending(db, LOAD_REQUEST, load.id, truck.id)

        offer = LoadRequest(
            load_id=load.id,
            truck_id=truck.id,
            carrier_id=truck.carrier_id,
            requested_by_id=actor.get("user_id"),
            notes=notes,
            proposed_rate=proposed_rate,
            expires_at=_expiry(expires_in_hours),
        )
        notice = Notice(
            type=LOAD_REQUEST.received_notice,
            title="New load request",
            message=f"Truck {truck.license_plate} requested your load {_route(load)}",
            organization_id=load.shipper_id,
            metadata={"load_id": load.id, "truck_id": truck.id},
        )
        return await _store_offer(db, LOAD_REQUEST, offer, actor, notice)

    @staticmethod
    async def create_truck_request(
        db: AsyncSession,
        actor: dict,
        load_id: int,
        truck_id: int,
        notes: Optional[str] = None,
        proposed_rate: Optional[Decimal] = None,
        expires_in_hours: Optional[int] = None,
    ) -> TruckRequest:
        """A shipper asks a carrier's posted truck to carry one of its loads."""
        load, truck = await _load_and_truck(db, load_id, truck_id)

        if not can_request_truck(actor, load.shipper_id):
            raise InsufficientPermissionsError("You can only request trucks for your own loads")
        _ensure_load_open(load, f"Cannot request truck for load with status {load.status.value}")

        if not await _has_active_posting(db, truck.id):
            raise InvalidStateError("Truck is not currently posted as available")
        await _ensure_no_pending(db, TRUCK_REQUEST, load.id, truck.id)

        offer = TruckRequest(
            load_id=load.id,
            truck_id=truck.id,
            shipper_id=load.shipper_id,
            requested_by_id=actor.get("user_id"),
            notes=notes,
            proposed_rate=proposed_rate,
            expires_at=_expiry(expires_in_hours),
        )
        notice = Notice(
            type=TRUCK_REQUEST.received_notice,
            title="New truck request",
            message=f"A shipper requested truck {truck.license_plate} for {_route(load)}",
            organization_id=truck.carrier_id,
            metadata={"load_id": load.id, "truck_id": truck.id},
        )
        return await _store_offer(db, TRUCK_REQUEST, offer, actor, notice)

    @staticmethod
    async def create_match_proposal(
        db: AsyncSession,
        actor: dict,
        load_id: int,
        truck_id: int,
        notes: Optional[str] = None,
        proposed_rate: Optional[Decimal] = None,
        expires_in_hours: Optional[int] = None,
    ) -> MatchProposal:
        """A dispatcher suggests a truck for a load. The carrier decides."""
        if not can_propose(actor):
            raise InsufficientPermissionsError("You do not have permission to create match proposals")

        load, truck = await _load_and_truck(db, load_id, truck_id)
        _ensure_load_open(load, f"Cannot propose match for load with status {load.status.value}")
        await _ensure_no_pending(db, MATCH_PROPOSAL, load.id, truck.id)

        offer = MatchProposal(
            load_id=load.id,
            truck_id=truck.id,
            carrier_id=truck.carrier_id,
            requested_by_id=actor.get("user_id"),
            notes=notes,
            proposed_rate=proposed_rate,
            expires_at=_expiry(expires_in_hours),
        )
        notice = Notice(
            type=MATCH_PROPOSAL.received_notice,
            title="New match proposal",
            message=f"Truck {truck.license_plate} was proposed for load {_route(load)}",
            organization_id=truck.carrier_id,
            metadata={"load_id": load.id, "truck_id": truck.id},
        )
        return await _store_offer(db, MATCH_PROPOSAL, offer, actor, notice)

    @staticmethod
    async def respond(
        db: AsyncSession,
        kind: OfferKind,
        offer_id: int,
        action: ResponseAction,
        actor: dict,
        response_notes: Optional[str] = None,
    ) -> OfferResponse:
        """
        Approve (accept) or reject an offer.

        Re-answering with the same outcome is an idempotent success; any
        other answer to a resolved offer is a 400. Approval assigns the
        truck through the coordinator, so the approval, the trip and the
        sibling cancellations commit together or not at all.

        Raises:
            ResourceNotFoundError: Offer missing
            InsufficientPermissionsError: Actor lacks final authority
            InvalidStateError: Wrong action, resolved or expired offer
            ConflictError: Load or truck taken meanwhile
        """
        if action not in (kind.approve_action, ResponseAction.REJECT):
            raise InvalidStateError(
                f"Action must be {kind.approve_action.value} or {ResponseAction.REJECT.value}",
                details={"action": action.value},
            )
        approving = action == kind.approve_action
        target = RequestStatus.APPROVED if approving else RequestStatus.REJECTED
        user_id = actor.get("user_id")

        try:
            # Load before offer, the order assign() and cancel_competing_offers() use
            offer = await db.get(kind.model, offer_id)
            if offer is None:
                raise ResourceNotFoundError(kind.model.kind_label, offer_id)
            await lock_row(db, Load, offer.load_id)
            offer = await lock_row(db, kind.model, offer_id)
            if offer is None:
                raise ResourceNotFoundError(kind.model.kind_label, offer_id)

            load, truck = await _load_and_truck(db, offer.load_id, offer.truck_id)
            if not kind.may_respond(actor, load, truck):
                raise InsufficientPermissionsError(kind.forbidden_message)

            if offer.status != RequestStatus.PENDING:
                current = offer.status
                if current == target:
                    await db.rollback()
                    return OfferResponse(
                        offer_id=offer_id,
                        status=current,
                        message=f"{kind.noun} was already {current.value.lower()}",
                        idempotent=True,
                    )
                raise InvalidStateError(
                    f"{kind.noun} has already been {current.value.lower()}",
                    details={"currentStatus": current.value},
                )

            if is_past(offer.expires_at):
                offer.status = RequestStatus.EXPIRED
                await db.commit()
                logger.info("%s %s expired before a response", kind.model.kind_label, offer_id)
                raise InvalidStateError(
                    f"{kind.noun} has expired",
                    details={"currentStatus": RequestStatus.EXPIRED.value},
                )

            requester = Notice(
                type=kind.approved_notice if approving else kind.rejected_notice,
                title=f"{kind.model.kind_label} {'approved' if approving else 'rejected'}",
                message=_response_message(kind, load, approving, response_notes),
                user_id=offer.requested_by_id,
                metadata={"offer_id": offer_id, "load_id": load.id, "truck_id": truck.id},
            )

            if approving:
                assignment = await AssignmentCoordinator.assign(
                    db,
                    offer.load_id,
                    offer.truck_id,
                    actor,
                    offer=offer,
                    response_notes=response_notes,
                    source=kind.source,
                    offer_event=kind.approved_event,
                    extra_notices=[requester],
                )
                return OfferResponse(
                    offer_id=offer_id,
                    status=RequestStatus.APPROVED,
                    message=f"{kind.model.kind_label} approved. Load has been assigned.",
                    assignment=assignment,
                    notifications_sent=assignment.notifications_sent,
                )

            offer.status = RequestStatus.REJECTED
            offer.responded_at = datetime.utcnow()
            offer.responded_by_id = user_id
            offer.response_notes = response_notes
            await record_load_event(
                db,
                load.id,
                kind.rejected_event,
                description=f"{kind.model.kind_label} {offer_id} rejected",
                user_id=user_id,
                metadata={"offer_id": offer_id, "truck_id": truck.id, "response_notes": response_notes},
            )
            await db.commit()
        except DBAPIError as exc:
            await db.rollback()
            if not is_lock_conflict(exc):
                raise
            raise ConflictError(
                f"{kind.noun} was answered concurrently. Please refresh and try again.",
                details={"offerId": offer_id},
            )
        except Exception:
            await db.rollback()
            raise

        logger.info("%s %s rejected", kind.model.kind_label, offer_id)
        sent = await send_notices(db, [requester], actor_id=user_id)
        return OfferResponse(
            offer_id=offer_id,
            status=RequestStatus.REJECTED,
            message=f"{kind.model.kind_label} rejected.",
            notifications_sent=sent,
        )

    @staticmethod
    async def list_offers(
        db: AsyncSession,
        kind: OfferKind,
        actor: dict,
        status: Optional[RequestStatus] = None,
        load_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Any]:
        """
        Offers visible to the actor.

        Admins and dispatchers see everything, shippers the offers on their
        loads, carriers the offers involving their trucks.
        """
        model = kind.model
        query = select(model)

        role = actor.get("role")
        org_id = actor.get("organization_id")
        if not is_admin(actor) and role != UserRole.DISPATCHER.value:
            if role == UserRole.SHIPPER.value:
                query = query.join(Load, Load.id == model.load_id).where(Load.shipper_id == org_id)
            elif role == UserRole.CARRIER.value:
                query = query.join(Truck, Truck.id == model.truck_id).where(Truck.carrier_id == org_id)
            else:
                return []

        if status is not None:
            query = query.where(model.status == status)
        if load_id is not None:
            query = query.where(model.load_id == load_id)

        query = query.order_by(model.created_at.desc(), model.id.desc()).offset(offset).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())


def _response_message(kind: OfferKind, load: Load, approving: bool, notes: Optional[str]) -> str:
    if approving:
        return f"Your {kind.noun.lower()} for the load from {load.pickup_city} to {load.delivery_city} has been approved!"
    message = f"Your {kind.noun.lower()} for the load from {load.pickup_city} to {load.delivery_city} was rejected."
    if notes:
        message += f" Reason: {notes}"
    return message
