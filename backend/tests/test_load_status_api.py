"""
Load status API tests: lifecycle enforcement, role checks and the
trip/truck follow-through.
"""

from sqlalchemy import select

from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus
from backend.app.models.truck import Truck


async def _assign(client, carrier, load, truck):
    response = await client.post(
        f"/v1/loads/{load.id}/assign", json={"truck_id": truck.id}, headers=carrier.headers
    )
    assert response.status_code == 200
    return response.json()


async def _set_status(client, actor, load_id, status, reason=None):
    return await client.patch(
        f"/v1/loads/{load_id}/status", json={"status": status, "reason": reason}, headers=actor.headers
    )


async def test_in_transit_cannot_be_cancelled_directly(client, db_session, carrier, admin, load, truck, wallets):
    await _assign(client, carrier, load, truck)
    assert (await _set_status(client, carrier, load.id, "IN_TRANSIT")).status_code == 200

    response = await _set_status(client, admin, load.id, "CANCELLED")
    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "ERR_STATE_001"
    assert body["message"] == "Invalid transition from IN_TRANSIT to CANCELLED"
    assert body["details"]["validNextStates"] == ["DELIVERED", "EXCEPTION"]

    row = await db_session.get(Load, load.id, populate_existing=True)
    assert row.status == LoadStatus.IN_TRANSIT


async def test_cancel_through_exception(client, db_session, carrier, dispatcher, admin, load, truck, wallets):
    assigned = await _assign(client, carrier, load, truck)
    await _set_status(client, carrier, load.id, "IN_TRANSIT")

    exception = await _set_status(client, dispatcher, load.id, "EXCEPTION", reason="Border closed")
    assert exception.status_code == 200
    # The trip keeps its status while the exception is open
    assert exception.json()["trip_status"] is None

    cancelled = await _set_status(client, admin, load.id, "CANCELLED")
    assert cancelled.status_code == 200
    data = cancelled.json()
    assert data["previous_status"] == "EXCEPTION"
    assert data["trip_status"] == "CANCELLED"
    assert data["truck_released"] is True
    assert data["side_effects"]["escrow_refund"]["success"] is True

    row = await db_session.get(Load, load.id, populate_existing=True)
    assert row.status == LoadStatus.CANCELLED
    assert row.assigned_truck_id is None
    assert (await db_session.get(Trip, assigned["trip_id"], populate_existing=True)).status == TripStatus.CANCELLED
    assert (await db_session.get(Truck, truck.id, populate_existing=True)).is_available is True


async def test_role_may_not_set_status(client, shipper, carrier, load, truck, wallets):
    await _assign(client, carrier, load, truck)
    response = await _set_status(client, shipper, load.id, "IN_TRANSIT")
    assert response.status_code == 403
    assert response.json()["message"] == "Role SHIPPER cannot set status IN_TRANSIT"


async def test_assigned_requires_a_truck(client, admin, load):
    response = await _set_status(client, admin, load.id, "ASSIGNED")
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot set status ASSIGNED without a truck; assign a truck instead"


async def test_trip_follows_load_to_delivery(client, db_session, carrier, load, truck, wallets):
    assigned = await _assign(client, carrier, load, truck)

    for status, trip_status in (
        ("PICKUP_PENDING", "PICKUP_PENDING"),
        ("IN_TRANSIT", "IN_TRANSIT"),
        ("DELIVERED", "DELIVERED"),
    ):
        response = await _set_status(client, carrier, load.id, status)
        assert response.status_code == 200
        assert response.json()["trip_status"] == trip_status

    trip = await db_session.get(Trip, assigned["trip_id"], populate_existing=True)
    assert trip.started_at is not None
    assert trip.picked_up_at is not None
    assert trip.delivered_at is not None

    # Delivered frees the truck but keeps the binding for settlement
    row = await db_session.get(Load, load.id, populate_existing=True)
    assert row.assigned_truck_id == truck.id
    assert (await db_session.get(Truck, truck.id, populate_existing=True)).is_available is True


async def test_unrelated_user_cannot_change_status(client, other_carrier, carrier, load, truck, wallets):
    await _assign(client, carrier, load, truck)
    response = await _set_status(client, other_carrier, load.id, "IN_TRANSIT")
    assert response.status_code == 403


async def test_next_states(client, shipper, load):
    response = await client.get(f"/v1/loads/{load.id}/next-states", headers=shipper.headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "POSTED"
    assert data["description"] == "Load is posted and visible to carriers"
    assert set(data["valid_next_states"]) == {
        "SEARCHING", "OFFERED", "ASSIGNED", "UNPOSTED", "CANCELLED", "EXPIRED",
    }
    assert set(data["allowed_for_role"]) == {"UNPOSTED", "CANCELLED"}


async def test_history_records_each_step(client, shipper, carrier, load, truck, wallets):
    await _assign(client, carrier, load, truck)
    await _set_status(client, carrier, load.id, "PICKUP_PENDING", reason="Driver en route")

    response = await client.get(f"/v1/loads/{load.id}/history", headers=shipper.headers)
    assert response.status_code == 200
    events = response.json()
    types = [e["event_type"] for e in events]
    assert types[0] == "ASSIGNED"
    assert types[-1] == "STATUS_CHANGED"
    assert "ESCROW_FUNDED" in types
    assert events[-1]["meta_data"]["reason"] == "Driver en route"


async def test_load_detail_visibility(client, shipper, carrier, other_carrier, shipper_org, load_factory):
    draft = await load_factory(shipper_org.id, status=LoadStatus.DRAFT)
    posted = await load_factory(shipper_org.id)

    assert (await client.get(f"/v1/loads/{draft.id}", headers=shipper.headers)).status_code == 200
    # Posted loads are on the marketplace, drafts are not
    assert (await client.get(f"/v1/loads/{posted.id}", headers=carrier.headers)).status_code == 200
    assert (await client.get(f"/v1/loads/{draft.id}", headers=other_carrier.headers)).status_code == 403
    assert (await client.get("/v1/loads/9999", headers=shipper.headers)).status_code == 404


async def test_list_loads_is_scoped(client, db_session, shipper, carrier, load, load_factory, shipper_org, truck, wallets):
    await load_factory(shipper_org.id, pickup="Adama")

    shipper_view = await client.get("/v1/loads", headers=shipper.headers)
    assert len(shipper_view.json()) == 2

    assert (await client.get("/v1/loads", headers=carrier.headers)).json() == []
    await _assign(client, carrier, load, truck)
    carrier_view = await client.get("/v1/loads", headers=carrier.headers)
    assert [item["id"] for item in carrier_view.json()] == [load.id]
