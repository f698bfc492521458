"""
Proof of delivery and settlement automation tests.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from backend.app.domain.billing.settlement_service import SettlementAction, SettlementService
from backend.app.models.billing_enums import SettlementStatus, ServiceFeeStatus
from backend.app.models.financial_account import FinancialAccount
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus


async def _deliver(client, carrier, load, truck):
    assigned = await client.post(
        f"/v1/loads/{load.id}/assign", json={"truck_id": truck.id}, headers=carrier.headers
    )
    assert assigned.status_code == 200
    for status in ("IN_TRANSIT", "DELIVERED"):
        response = await client.patch(
            f"/v1/loads/{load.id}/status", json={"status": status}, headers=carrier.headers
        )
        assert response.status_code == 200


async def _submit_pod(client, carrier, load_id):
    return await client.post(
        f"/v1/loads/{load_id}/pod", json={"pod_url": "https://files.test/pod-1.pdf"}, headers=carrier.headers
    )


async def _age_pod(db, load_id, hours):
    row = await db.get(Load, load_id, populate_existing=True)
    row.pod_submitted_at = datetime.utcnow() - timedelta(hours=hours)
    await db.commit()


class TestProofOfDelivery:

    async def test_submit_and_verify(self, client, db_session, shipper, carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)

        submitted = await _submit_pod(client, carrier, load.id)
        assert submitted.status_code == 200
        assert submitted.json()["pod_submitted"] is True
        assert submitted.json()["pod_verified"] is False

        again = await _submit_pod(client, carrier, load.id)
        assert again.status_code == 400
        assert again.json()["message"] == "POD has already been submitted"

        verified = await client.post(f"/v1/loads/{load.id}/pod/verify", headers=shipper.headers)
        assert verified.status_code == 200
        assert verified.json()["pod_verified"] is True

        repeat = await client.post(f"/v1/loads/{load.id}/pod/verify", headers=shipper.headers)
        assert repeat.status_code == 200
        assert repeat.json()["idempotent"] is True

    async def test_pod_requires_delivery(self, client, carrier, load, truck, wallets):
        await client.post(f"/v1/loads/{load.id}/assign", json={"truck_id": truck.id}, headers=carrier.headers)
        response = await _submit_pod(client, carrier, load.id)
        assert response.status_code == 400
        assert response.json()["message"] == "POD can only be submitted for delivered loads"

    async def test_only_hauling_carrier_submits(self, client, carrier, other_carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)
        response = await _submit_pod(client, other_carrier, load.id)
        assert response.status_code == 403
        assert response.json()["message"] == "Only the assigned carrier can submit POD"

    async def test_only_owning_shipper_verifies(self, client, carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)
        response = await client.post(f"/v1/loads/{load.id}/pod/verify", headers=carrier.headers)
        assert response.status_code == 403

    async def test_verify_before_submit(self, client, shipper, carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)
        response = await client.post(f"/v1/loads/{load.id}/pod/verify", headers=shipper.headers)
        assert response.status_code == 400
        assert response.json()["message"] == "POD has not been submitted"


class TestSettlementAutomation:

    async def test_stale_pod_is_verified_and_settled(self, client, db_session, carrier, load, truck, wallets, corridor):
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)
        await _age_pod(db_session, load.id, hours=30)

        summary = await SettlementService.run_settlement_automation(db_session)

        assert summary == {"action": "full", "auto_verified_count": 1, "settled_count": 1}
        row = await db_session.get(Load, load.id, populate_existing=True)
        assert row.pod_verified is True
        assert row.settlement_status == SettlementStatus.PAID
        assert row.service_fee_status == ServiceFeeStatus.DEDUCTED
        assert row.settled_at is not None

        carrier_wallet = await db_session.get(FinancialAccount, wallets["carrier"], populate_existing=True)
        assert carrier_wallet.balance == Decimal("9500.00")

        # Nothing left to do on a second sweep
        again = await SettlementService.run_settlement_automation(db_session)
        assert again["auto_verified_count"] == 0
        assert again["settled_count"] == 0

    async def test_fresh_pod_waits(self, client, db_session, carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)

        verified = await SettlementService.run_settlement_automation(db_session, SettlementAction.AUTO_VERIFY)
        assert verified == {"action": "auto-verify", "auto_verified_count": 0}

        # A shorter window catches it
        await _age_pod(db_session, load.id, hours=3)
        assert await SettlementService.auto_verify_expired_pods(db_session, timeout_hours=2) == 1

    async def test_unfunded_load_stays_pending(self, client, db_session, shipper, carrier, load, truck):
        # No wallets: the escrow hold fails, so there is nothing to release
        load_id = load.id
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)
        await client.post(f"/v1/loads/{load.id}/pod/verify", headers=shipper.headers)

        settled = await SettlementService.process_ready_settlements(db_session)

        assert settled == 0
        row = await db_session.get(Load, load_id, populate_existing=True)
        assert row.settlement_status == SettlementStatus.PENDING

    async def test_admin_trigger_endpoint(self, client, admin, carrier, load, truck, wallets):
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)

        response = await client.post(
            "/v1/admin/settlement-automation",
            params={"action": "auto-verify", "timeout_hours": 1},
            headers=admin.headers,
        )
        assert response.status_code == 200
        assert response.json()["result"] == {
            "action": "auto-verify", "auto_verified_count": 0, "settled_count": None,
        }
        assert response.json()["stats"]["awaiting_verification"] == 1

        unknown = await client.post(
            "/v1/admin/settlement-automation", params={"action": "everything"}, headers=admin.headers
        )
        assert unknown.status_code == 400

    async def test_automation_is_admin_only(self, client, shipper):
        response = await client.post("/v1/admin/settlement-automation", headers=shipper.headers)
        assert response.status_code == 403


class TestManualSettlement:

    async def test_approve(self, client, db_session, admin, shipper, carrier, load, truck, wallets, corridor):
        await _deliver(client, carrier, load, truck)
        await _submit_pod(client, carrier, load.id)

        unverified = await client.post(f"/v1/admin/settlements/{load.id}/approve", headers=admin.headers)
        assert unverified.status_code == 400
        assert unverified.json()["message"] == "POD not verified - cannot settle"

        await client.post(f"/v1/loads/{load.id}/pod/verify", headers=shipper.headers)

        pending = await client.get("/v1/admin/settlements", headers=admin.headers)
        assert pending.json()["total_count"] == 1
        assert pending.json()["loads"][0]["id"] == load.id

        response = await client.post(f"/v1/admin/settlements/{load.id}/approve", headers=admin.headers)
        assert response.status_code == 200
        settlement = response.json()["settlement"]
        assert settlement["settlement_status"] == "PAID"
        assert settlement["carrier_payout"] == "9500.00"
        assert settlement["platform_revenue"] == "1000.00"
        assert settlement["service_fee"] == "2275.00"

        twice = await client.post(f"/v1/admin/settlements/{load.id}/approve", headers=admin.headers)
        assert twice.status_code == 400
        assert twice.json()["message"] == "Load is already settled"

        paid = await client.get("/v1/admin/settlements", params={"status": "PAID"}, headers=admin.headers)
        assert [item["id"] for item in paid.json()["loads"]] == [load.id]

        stats = await client.get("/v1/admin/settlement-automation", headers=admin.headers)
        assert stats.json()["stats"]["paid_settlements"] == 1
        assert stats.json()["stats"]["paid_value"] == "10500.00"

    async def test_load_must_be_delivered(self, client, admin, load):
        response = await client.post(f"/v1/admin/settlements/{load.id}/approve", headers=admin.headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Load must be DELIVERED to settle (status: POSTED)"

    async def test_missing_load(self, client, admin):
        response = await client.post("/v1/admin/settlements/9999/approve", headers=admin.headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Load with ID 9999 not found"

    async def test_unknown_settlement_filter(self, client, admin):
        response = await client.get("/v1/admin/settlements", params={"status": "LOST"}, headers=admin.headers)
        assert response.status_code == 400
