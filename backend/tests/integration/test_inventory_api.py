from __future__ import annotations

from fastapi.testclient import TestClient

from stockroom.container import store
from stockroom.main import app


def _seed(product_id: str = "prod_api", inventory: int = 10, **fields: object) -> None:
    store.products_by_id[product_id] = {
        "id": product_id,
        "name": f"Product {product_id}",
        "price": 15.0,
        "lowStockThreshold": 5,
        "allowBackorder": False,
        "isDeleted": False,
        "version": 0,
        "variants": [
            {
                "variantId": "var_1",
                "label": "Green",
                "price": 15.0,
                "inventory": inventory,
            }
        ],
        **fields,
    }


def test_health_reports_backing_services() -> None:
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    services = response.json()["services"]
    assert services["cache"]["state"] == "closed"
    assert {"mongo", "redis"} <= set(services)


def test_reserve_then_convert_records_sale() -> None:
    _seed()
    client = TestClient(app)

    reserved = client.post(
        "/v1/inventory/reservations",
        json={"productId": "prod_api", "variantLabel": "Green", "quantity": 2, "sessionId": "sess_1"},
    )
    assert reserved.status_code == 200
    body = reserved.json()
    assert body["success"] is True
    assert body["availableStock"] == 8
    assert body["expiresAt"]

    availability = client.get(
        "/v1/inventory/products/prod_api/availability",
        params={"variantId": "var_1", "quantity": 9},
    )
    assert availability.json() == {
        "productId": "prod_api",
        "available": False,
        "availableStock": 8,
        "requested": 9,
    }

    converted = client.post(
        f"/v1/inventory/reservations/{body['reservationId']}/convert",
        json={"orderId": "order_9"},
    )
    assert converted.status_code == 200
    payload = converted.json()
    assert payload["newQuantity"] == 8
    assert payload["historyRecord"]["reason"] == "sale"
    assert payload["historyRecord"]["metadata"]["orderId"] == "order_9"
    assert store.reservations_by_id == {}


def test_failed_reservation_is_not_an_error() -> None:
    _seed(inventory=1)
    client = TestClient(app)
    response = client.post(
        "/v1/inventory/reservations",
        json={"productId": "prod_api", "variantId": "var_1", "quantity": 3, "sessionId": "sess_1"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "availableStock": 1,
        "message": "Only 1 items available",
    }


def test_release_endpoints() -> None:
    _seed()
    client = TestClient(app)
    first = client.post(
        "/v1/inventory/reservations",
        json={"productId": "prod_api", "variantId": "var_1", "quantity": 1, "sessionId": "sess_1"},
    ).json()
    client.post(
        "/v1/inventory/reservations",
        json={"productId": "prod_api", "quantity": 1, "sessionId": "sess_2"},
    )

    released = client.delete(f"/v1/inventory/reservations/{first['reservationId']}")
    assert released.json() == {"reservationId": first["reservationId"], "released": True}

    session = client.post("/v1/inventory/reservations/release-session", json={"sessionId": "sess_2"})
    assert session.json() == {"sessionId": "sess_2", "released": 1}


def test_adjustment_records_acting_user() -> None:
    _seed()
    client = TestClient(app)

    response = client.post(
        "/v1/inventory/adjustments",
        headers={"X-User-Id": "ops_7"},
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": 5, "reason": "restock"},
    )
    assert response.status_code == 200
    assert response.json()["newQuantity"] == 15

    history = client.get("/v1/inventory/products/prod_api/history", params={"limit": 10})
    assert history.status_code == 200
    body = history.json()
    assert body["total"] == 1
    assert body["history"][0]["userId"] == "ops_7"

    anonymous = client.post(
        "/v1/inventory/adjustments",
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": -1, "reason": "damage"},
    )
    assert anonymous.json()["historyRecord"]["userId"] == "system"


def test_adjustment_validation_errors() -> None:
    _seed()
    client = TestClient(app)

    wrong_direction = client.post(
        "/v1/inventory/adjustments",
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": 2, "reason": "sale"},
    )
    assert wrong_direction.status_code == 422

    too_large = client.post(
        "/v1/inventory/adjustments",
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": 10_001, "reason": "restock"},
    )
    assert too_large.status_code == 422

    unknown_reason = client.post(
        "/v1/inventory/adjustments",
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": 1, "reason": "gift"},
    )
    assert unknown_reason.status_code == 422


def test_inventory_errors_map_to_structured_detail() -> None:
    _seed(inventory=2)
    client = TestClient(app)

    missing = client.get("/v1/inventory/products/nope")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "PRODUCT_NOT_FOUND"

    short = client.post(
        "/v1/inventory/adjustments",
        json={"productId": "prod_api", "variantId": "var_1", "adjustment": -3, "reason": "sale"},
    )
    assert short.status_code == 400
    detail = short.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_INVENTORY"
    assert detail["available"] == 2

    convert = client.post("/v1/inventory/reservations/res_nope/convert", json={"orderId": "o"})
    assert convert.status_code == 404
    assert convert.json()["detail"]["code"] == "RESERVATION_NOT_FOUND"


def test_bulk_adjustments_report_each_result() -> None:
    _seed()
    client = TestClient(app)
    response = client.post(
        "/v1/inventory/adjustments/bulk",
        json={
            "updates": [
                {"productId": "prod_api", "variantId": "var_1", "adjustment": 1, "reason": "return"},
                {"productId": "ghost", "variantId": "var_1", "adjustment": 1, "reason": "return"},
            ]
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert (body["succeeded"], body["failed"]) == (1, 1)
    assert body["results"][1]["error"] == "Product not found"


def test_low_stock_pagination_and_reports() -> None:
    for index, inventory in enumerate([1, 2, 3, 4, 9]):
        _seed(f"prod_{index}", inventory=inventory)
    client = TestClient(app)

    first = client.get("/v1/inventory/low-stock", params={"page": 1, "limit": 3}).json()
    assert first["total"] == 4
    assert first["totalPages"] == 2
    assert [row["availableStock"] for row in first["alerts"]] == [1, 2, 3]

    second = client.get("/v1/inventory/low-stock", params={"page": 2, "limit": 3}).json()
    assert [row["availableStock"] for row in second["alerts"]] == [4]

    metrics = client.get("/v1/inventory/metrics").json()["metrics"]
    assert metrics["totalProducts"] == 5
    assert metrics["lowStockCount"] == 4

    value = client.get("/v1/inventory/stock-value").json()
    assert value["totalValue"] == 19 * 15.0

    assert client.get("/v1/inventory/out-of-stock").json() == {"products": []}


def test_turnover_rejects_inverted_window() -> None:
    client = TestClient(app)
    response = client.get(
        "/v1/inventory/turnover",
        params={"startDate": "2026-02-01T00:00:00Z", "endDate": "2026-01-01T00:00:00Z"},
    )
    assert response.status_code == 400

    empty = client.get(
        "/v1/inventory/turnover",
        params={"startDate": "2026-01-01T00:00:00Z", "endDate": "2026-02-01T00:00:00Z"},
    )
    assert empty.json() == {"turnover": []}


def test_checkout_validation_endpoint() -> None:
    _seed(inventory=3)
    client = TestClient(app)
    response = client.post(
        "/v1/inventory/checkout/validate",
        json={"items": [{"productId": "prod_api", "variantId": "var_1", "quantity": 5}]},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["isValid"] is False
    assert body["adjustments"][0]["adjustedQuantity"] == 3
