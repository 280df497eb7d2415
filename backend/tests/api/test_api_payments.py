"""
支付 API 测试
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def invoice(client: TestClient, single_room_type, sample_guest):
    """总额 220.00 的发票"""
    booking = client.post("/bookings", json={
        "room_type_id": single_room_type.id,
        "guest_id": sample_guest.id,
        "check_in_date": "2024-06-01",
        "check_out_date": "2024-06-03",
    }).json()
    return client.post(f"/invoices/bookings/{booking['id']}").json()


class TestPaymentApi:
    def test_pay_in_two_parts(self, client: TestClient, invoice):
        first = client.post("/payments", json={"invoice_id": invoice["id"], "amount": "120.00"})
        assert first.status_code == 201
        assert first.json()["status"] == "succeeded"

        summary = client.get(f"/payments/invoices/{invoice['id']}/summary").json()
        assert Decimal(summary["balance_due"]) == Decimal("100.00")
        assert summary["is_fully_paid"] is False

        client.post("/payments", json={"invoice_id": invoice["id"], "amount": "100.00", "method": "card"})
        summary = client.get(f"/payments/invoices/{invoice['id']}/summary").json()
        assert summary["is_fully_paid"] is True
        assert client.get(f"/invoices/{invoice['id']}").json()["status"] == "paid"

        transactions = client.get(f"/payments/invoices/{invoice['id']}/transactions").json()
        assert [t["method"] for t in transactions] == ["cash", "card"]

    @pytest.mark.parametrize("amount", ["0", "-10.00"])
    def test_non_positive_amount(self, client: TestClient, invoice, amount):
        response = client.post("/payments", json={"invoice_id": invoice["id"], "amount": amount})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_amount"

    def test_unknown_invoice(self, client: TestClient):
        response = client.post("/payments", json={"invoice_id": 999, "amount": "10.00"})
        assert response.status_code == 404

    def test_unknown_provider(self, client: TestClient, invoice):
        response = client.post("/payments", json={
            "invoice_id": invoice["id"], "amount": "10.00", "provider": "paypal",
        })
        assert response.status_code == 404
        assert response.json()["context"] == {"provider": "paypal"}
