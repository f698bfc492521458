"""
Offer workflow tests: load requests, truck requests and match proposals.
"""

from datetime import datetime, timedelta

from sqlalchemy import func, select

from backend.app.domain.assignment.coordinator import LOAD_TAKEN_MESSAGE
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.models.load_request import LoadRequest
from backend.app.models.match_proposal import MatchProposal
from backend.app.models.notification import Notification, NotificationType
from backend.app.models.offer_enums import RequestStatus
from backend.app.models.trip import Trip
from backend.app.models.truck_request import TruckRequest


async def _offer(client, path, actor, load_id, truck_id, **extra):
    body = {"load_id": load_id, "truck_id": truck_id, **extra}
    return await client.post(path, json=body, headers=actor.headers)


async def _respond(client, path, actor, offer_id, action, notes=None):
    return await client.post(
        f"{path}/{offer_id}/respond",
        json={"action": action, "response_notes": notes},
        headers=actor.headers,
    )


async def _trip_count(db, load_id):
    return (await db.execute(select(func.count(Trip.id)).where(Trip.load_id == load_id))).scalar()


class TestLoadRequests:

    async def test_carrier_requests_and_shipper_approves(self, client, db_session, shipper, carrier, load, truck, wallets):
        created = await _offer(client, "/v1/load-requests", carrier, load.id, truck.id, notes="Ready tomorrow")
        assert created.status_code == 201
        offer = created.json()
        assert offer["status"] == "PENDING"
        assert offer["requested_by_id"] == carrier.id

        # Shipper is told about the request
        inbox = await client.get("/v1/notifications", headers=shipper.headers)
        assert [n["type"] for n in inbox.json()] == [NotificationType.LOAD_REQUEST_RECEIVED.value]

        approved = await _respond(client, "/v1/load-requests", shipper, offer["id"], "APPROVE")
        assert approved.status_code == 200
        data = approved.json()
        assert data["status"] == "APPROVED"
        assert data["message"] == "Load request approved. Load has been assigned."
        assert data["assignment"]["truck_id"] == truck.id
        assert data["assignment"]["side_effects"]["escrow_hold"]["success"] is True

        row = await db_session.get(Load, load.id, populate_existing=True)
        assert row.status == LoadStatus.ASSIGNED
        assert row.assigned_truck_id == truck.id
        stored = await db_session.get(LoadRequest, offer["id"], populate_existing=True)
        assert stored.status == RequestStatus.APPROVED
        assert stored.responded_by_id == shipper.id

        carrier_inbox = await client.get("/v1/notifications", headers=carrier.headers)
        types = {n["type"] for n in carrier_inbox.json()}
        assert NotificationType.LOAD_REQUEST_APPROVED.value in types

    async def test_duplicate_pending_request_conflicts(self, client, carrier, load, truck):
        first = await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)
        second = await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)
        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["message"] == "A pending request already exists for this load-truck pair"

    async def test_truck_without_posting_cannot_request(self, client, carrier, carrier_org, load, truck_factory):
        idle = await truck_factory(carrier_org.id, "AA-3-30001", posted=False)
        response = await _offer(client, "/v1/load-requests", carrier, load.id, idle.id)
        assert response.status_code == 400
        assert response.json()["message"] == "Truck must have an active posting to request loads"

    async def test_only_carriers_request_loads(self, client, shipper, load, truck):
        response = await _offer(client, "/v1/load-requests", shipper, load.id, truck.id)
        assert response.status_code == 403

    async def test_reapproving_is_idempotent(self, client, db_session, shipper, carrier, load, truck, wallets):
        offer = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        await _respond(client, "/v1/load-requests", shipper, offer["id"], "APPROVE")

        again = await _respond(client, "/v1/load-requests", shipper, offer["id"], "APPROVE")
        assert again.status_code == 200
        assert again.json()["idempotent"] is True
        assert again.json()["message"] == "Request was already approved"
        assert await _trip_count(db_session, load.id) == 1

        rejected = await _respond(client, "/v1/load-requests", shipper, offer["id"], "REJECT")
        assert rejected.status_code == 400
        assert rejected.json()["message"] == "Request has already been approved"

    async def test_competing_request_loses(self, client, db_session, shipper, carrier, load, truck, second_truck, wallets):
        offer = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        await _respond(client, "/v1/load-requests", shipper, offer["id"], "APPROVE")

        # A pending request that slipped in next to the approved one
        late = LoadRequest(
            load_id=load.id,
            truck_id=second_truck.id,
            carrier_id=second_truck.carrier_id,
            requested_by_id=carrier.id,
            expires_at=datetime.utcnow() + timedelta(hours=24),
        )
        db_session.add(late)
        await db_session.commit()

        response = await _respond(client, "/v1/load-requests", shipper, late.id, "APPROVE")
        assert response.status_code == 409
        assert response.json()["message"] == LOAD_TAKEN_MESSAGE

        row = await db_session.get(Load, load.id, populate_existing=True)
        assert row.assigned_truck_id == truck.id
        assert await _trip_count(db_session, load.id) == 1
        assert (await db_session.get(LoadRequest, late.id, populate_existing=True)).status == RequestStatus.PENDING

    async def test_approval_cancels_sibling_requests(self, client, db_session, shipper, carrier, load, truck, second_truck, wallets):
        first = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        sibling = (await _offer(client, "/v1/load-requests", carrier, load.id, second_truck.id)).json()

        response = await _respond(client, "/v1/load-requests", shipper, first["id"], "APPROVE")
        assert response.json()["assignment"]["cancelled_offers"] == 1

        stored = await db_session.get(LoadRequest, sibling["id"], populate_existing=True)
        assert stored.status == RequestStatus.CANCELLED

    async def test_expired_request(self, client, db_session, shipper, carrier, load, truck):
        stale = LoadRequest(
            load_id=load.id,
            truck_id=truck.id,
            carrier_id=truck.carrier_id,
            requested_by_id=carrier.id,
            expires_at=datetime.utcnow() - timedelta(minutes=5),
        )
        db_session.add(stale)
        await db_session.commit()

        response = await _respond(client, "/v1/load-requests", shipper, stale.id, "APPROVE")
        assert response.status_code == 400
        assert response.json()["message"] == "Request has expired"
        assert response.json()["details"]["currentStatus"] == "EXPIRED"

        assert (await db_session.get(LoadRequest, stale.id, populate_existing=True)).status == RequestStatus.EXPIRED
        assert (await db_session.get(Load, load.id, populate_existing=True)).assigned_truck_id is None

    async def test_only_owning_shipper_responds(self, client, carrier, other_carrier, load, truck):
        offer = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        response = await _respond(client, "/v1/load-requests", other_carrier, offer["id"], "APPROVE")
        assert response.status_code == 403
        assert response.json()["message"] == "Only the shipper who owns the load can respond"

    async def test_reject_notifies_requester(self, client, db_session, shipper, carrier, load, truck):
        offer = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        response = await _respond(client, "/v1/load-requests", shipper, offer["id"], "REJECT", notes="Rate too high")
        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"

        row = await db_session.get(Load, load.id, populate_existing=True)
        assert row.status == LoadStatus.POSTED
        assert row.assigned_truck_id is None

        result = await db_session.execute(
            select(Notification).where(
                Notification.user_id == carrier.id,
                Notification.type == NotificationType.LOAD_REQUEST_REJECTED,
            )
        )
        notification = result.scalar_one()
        assert notification.message.endswith("Reason: Rate too high")

    async def test_accept_is_not_a_request_action(self, client, shipper, carrier, load, truck):
        offer = (await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)).json()
        response = await _respond(client, "/v1/load-requests", shipper, offer["id"], "ACCEPT")
        assert response.status_code == 400
        assert response.json()["message"] == "Action must be APPROVE or REJECT"

    async def test_listing_is_scoped(self, client, shipper, carrier, other_carrier, dispatcher, load, truck):
        await _offer(client, "/v1/load-requests", carrier, load.id, truck.id)

        for actor, expected in ((shipper, 1), (carrier, 1), (dispatcher, 1), (other_carrier, 0)):
            response = await client.get("/v1/load-requests", headers=actor.headers)
            assert response.status_code == 200
            assert len(response.json()) == expected


class TestTruckRequests:

    async def test_shipper_requests_and_carrier_approves(self, client, db_session, shipper, carrier, load, truck, wallets):
        created = await _offer(client, "/v1/truck-requests", shipper, load.id, truck.id, proposed_rate="9800.00")
        assert created.status_code == 201
        offer = created.json()

        # The shipper cannot answer its own request
        own = await _respond(client, "/v1/truck-requests", shipper, offer["id"], "APPROVE")
        assert own.status_code == 403

        approved = await _respond(client, "/v1/truck-requests", carrier, offer["id"], "APPROVE")
        assert approved.status_code == 200
        assert approved.json()["message"] == "Truck request approved. Load has been assigned."
        assert (await db_session.get(TruckRequest, offer["id"], populate_existing=True)).status == RequestStatus.APPROVED
        assert (await db_session.get(Load, load.id, populate_existing=True)).assigned_truck_id == truck.id

    async def test_other_shipper_cannot_request(self, client, carrier, load, truck):
        response = await _offer(client, "/v1/truck-requests", carrier, load.id, truck.id)
        assert response.status_code == 403
        assert response.json()["message"] == "You can only request trucks for your own loads"

    async def test_closed_load_cannot_be_requested(self, client, shipper, shipper_org, load_factory, truck):
        draft = await load_factory(shipper_org.id, status=LoadStatus.DRAFT)
        response = await _offer(client, "/v1/truck-requests", shipper, draft.id, truck.id)
        assert response.status_code == 400
        assert response.json()["message"] == "Cannot request truck for load with status DRAFT"


class TestMatchProposals:

    async def test_dispatcher_proposes_and_carrier_accepts(self, client, db_session, dispatcher, carrier, load, truck, wallets):
        created = await _offer(client, "/v1/match-proposals", dispatcher, load.id, truck.id)
        assert created.status_code == 201
        offer = created.json()

        wrong_action = await _respond(client, "/v1/match-proposals", carrier, offer["id"], "APPROVE")
        assert wrong_action.status_code == 400
        assert wrong_action.json()["message"] == "Action must be ACCEPT or REJECT"

        accepted = await _respond(client, "/v1/match-proposals", carrier, offer["id"], "ACCEPT")
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "APPROVED"
        assert (await db_session.get(MatchProposal, offer["id"], populate_existing=True)).status == RequestStatus.APPROVED

        row = await db_session.get(Load, load.id, populate_existing=True)
        assert row.status == LoadStatus.ASSIGNED

    async def test_dispatcher_cannot_accept(self, client, dispatcher, load, truck):
        offer = (await _offer(client, "/v1/match-proposals", dispatcher, load.id, truck.id)).json()
        response = await _respond(client, "/v1/match-proposals", dispatcher, offer["id"], "ACCEPT")
        assert response.status_code == 403

    async def test_only_dispatchers_propose(self, client, carrier, load, truck):
        response = await _offer(client, "/v1/match-proposals", carrier, load.id, truck.id)
        assert response.status_code == 403
        assert response.json()["message"] == "You do not have permission to create match proposals"

    async def test_proposal_for_assigned_load(self, client, dispatcher, carrier, load, truck, second_truck, wallets):
        await client.post(f"/v1/loads/{load.id}/assign", json={"truck_id": truck.id}, headers=carrier.headers)
        response = await _offer(client, "/v1/match-proposals", dispatcher, load.id, second_truck.id)
        assert response.status_code == 400
        assert response.json()["message"] == "Cannot propose match for load with status ASSIGNED"
