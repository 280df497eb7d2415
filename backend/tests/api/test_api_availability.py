"""
可用性 API 测试
覆盖 /availability 端点与错误响应格式
"""
from datetime import date
from fastapi.testclient import TestClient


class TestAvailabilityApi:
    """可用性查询"""

    def test_empty_inventory(self, client: TestClient, sample_room_type):
        response = client.get("/availability", params={
            "room_type_id": sample_room_type.id, "from": "2024-06-01", "to": "2024-06-03",
        })
        assert response.status_code == 200
        assert response.json() == {
            "room_type_id": sample_room_type.id,
            "total_rooms": 2,
            "reserved_count": 0,
            "available_count": 2,
        }

    def test_counts_overlapping_bookings(self, client: TestClient, sample_room_type, sample_guest):
        client.post("/bookings", json={
            "room_type_id": sample_room_type.id, "guest_id": sample_guest.id,
            "check_in_date": "2024-06-01", "check_out_date": "2024-06-03",
        })

        overlapping = client.get("/availability", params={
            "room_type_id": sample_room_type.id, "from": "2024-06-02", "to": "2024-06-04",
        }).json()
        assert overlapping["available_count"] == 1

        adjacent = client.get("/availability", params={
            "room_type_id": sample_room_type.id, "from": "2024-06-03", "to": "2024-06-05",
        }).json()
        assert adjacent["available_count"] == 2

    def test_invalid_range(self, client: TestClient, sample_room_type):
        response = client.get("/availability", params={
            "room_type_id": sample_room_type.id, "from": "2024-06-03", "to": "2024-06-03",
        })
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_range"
        assert body["detail"]

    def test_unknown_room_type(self, client: TestClient):
        response = client.get("/availability", params={
            "room_type_id": 999, "from": "2024-06-01", "to": "2024-06-03",
        })
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_search_by_guest_count(self, client: TestClient, sample_room_type, suite_room_type):
        params = {"from": date(2024, 6, 1).isoformat(), "to": date(2024, 6, 3).isoformat()}

        everything = client.get("/availability/search", params=params).json()
        assert {r["room_type_id"] for r in everything} == {sample_room_type.id, suite_room_type.id}

        family = client.get("/availability/search", params={**params, "guest_count": 4}).json()
        assert [r["room_type_id"] for r in family] == [suite_room_type.id]


class TestHealth:
    def test_root_and_health(self, client: TestClient):
        assert client.get("/health").json() == {"status": "healthy"}
        assert "version" in client.get("/").json()
