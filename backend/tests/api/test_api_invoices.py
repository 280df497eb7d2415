"""
发票 API 测试
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def booking(client: TestClient, single_room_type, sample_guest, sample_service):
    """两晚单人间 + 2 份早餐"""
    return client.post("/bookings", json={
        "room_type_id": single_room_type.id,
        "guest_id": sample_guest.id,
        "check_in_date": "2024-06-01",
        "check_out_date": "2024-06-03",
        "extras": [{"service_id": sample_service.id, "quantity": 2}],
    }).json()


class TestInvoiceApi:
    def test_preview(self, client: TestClient, booking):
        response = client.get(f"/invoices/bookings/{booking['id']}/preview")
        assert response.status_code == 200
        data = response.json()
        assert [line["kind"] for line in data["lines"]] == ["room", "service"]
        assert Decimal(data["subtotal"]) == Decimal("250")
        assert Decimal(data["tax"]) == Decimal("22.5")
        assert Decimal(data["total"]) == Decimal("272.50")

        # 试算不落库
        assert client.get(f"/invoices/bookings/{booking['id']}").status_code == 404

    def test_build_is_idempotent(self, client: TestClient, booking):
        first = client.post(f"/invoices/bookings/{booking['id']}").json()
        second = client.post(f"/invoices/bookings/{booking['id']}").json()
        assert first == second
        assert first["invoice_no"].startswith("INV-")
        assert first["status"] == "unpaid"
        assert client.get(f"/invoices/{first['id']}").json()["id"] == first["id"]

    def test_finalize(self, client: TestClient, booking, sample_service):
        final = client.post(f"/invoices/bookings/{booking['id']}/finalize").json()
        assert final["is_final"] is True

        client.post(f"/bookings/{booking['id']}/services", json={"service_id": sample_service.id})
        rebuilt = client.post(f"/invoices/bookings/{booking['id']}").json()
        assert Decimal(rebuilt["total"]) == Decimal("272.50")

    def test_cancelled_booking(self, client: TestClient, booking):
        client.post(f"/bookings/{booking['id']}/cancel")
        response = client.post(f"/invoices/bookings/{booking['id']}")
        assert response.status_code == 409

    def test_unknown_invoice(self, client: TestClient):
        response = client.get("/invoices/999")
        assert response.status_code == 404
        assert response.json()["context"] == {"invoice_id": 999}
