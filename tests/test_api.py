def _create(client, make_payload, **overrides):
    response = client.post("/api/orders", json=make_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def test_create_order(client, make_payload):
    order = _create(client, make_payload)

    assert order["id"] == 1
    assert order["status"] == "pending"
    assert order["createdAt"]
    assert order["total"] == 32.99
    assert order["items"][0]["name"] == "Old Fashioned"


def test_create_then_get(client, make_payload):
    order = _create(client, make_payload)

    first = client.get(f"/api/orders/{order['id']}")
    second = client.get(f"/api/orders/{order['id']}")

    assert first.status_code == 200
    assert first.json() == order
    assert second.json() == first.json()


def test_create_rejects_invalid_payload(client, make_payload):
    response = client.post("/api/orders", json=make_payload(items=[], total=40))

    assert response.status_code == 400
    body = response.json()
    fields = {e["field"] for e in body["errors"]}
    assert "items" in fields


def test_create_rejects_inconsistent_total(client, make_payload):
    response = client.post("/api/orders", json=make_payload(total=30))

    assert response.status_code == 400
    assert "total must equal" in response.text


def test_create_rejects_non_pending_status(client, make_payload):
    response = client.post("/api/orders", json=make_payload(status="delivered"))
    assert response.status_code == 400


def test_create_rejects_missing_fields(client, make_payload):
    payload = make_payload()
    del payload["deliveryAddress"]
    payload["items"][0]["quantity"] = 0

    response = client.post("/api/orders", json=payload)

    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert {"deliveryAddress", "items.0.quantity"} <= fields


def test_get_missing_order(client):
    response = client.get("/api/orders/99")
    assert response.status_code == 404
    assert response.json() == {"message": "Order not found"}


def test_get_invalid_order_id(client):
    assert client.get("/api/orders/abc").status_code == 400


def test_orders_by_user(client, make_payload):
    _create(client, make_payload, userId="alice")
    _create(client, make_payload, userId="bob")

    assert len(client.get("/api/user/alice/orders").json()) == 1
    assert client.get("/api/user/nobody/orders").json() == []


def test_end_to_end_delivery_flow(client, make_payload):
    order = _create(client, make_payload)
    url = f"/api/orders/{order['id']}/status"

    confirmed = client.patch(url, json={"status": "confirmed"})
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    skipped = client.patch(url, json={"status": "delivered"})
    assert skipped.status_code == 409
    assert skipped.json() == {
        "message": f"Cannot change order {order['id']} from 'confirmed' to 'delivered'",
        "from": "confirmed",
        "to": "delivered",
    }
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == "confirmed"


def test_cancel_rules(client, make_payload):
    in_transit = _create(client, make_payload)
    for status in ("confirmed", "preparing", "in_transit"):
        client.patch(f"/api/orders/{in_transit['id']}/status", json={"status": status})
    assert client.patch(f"/api/orders/{in_transit['id']}/status", json={"status": "canceled"}).status_code == 409

    confirmed = _create(client, make_payload)
    url = f"/api/orders/{confirmed['id']}/status"
    client.patch(url, json={"status": "confirmed"})
    canceled = client.patch(url, json={"status": "canceled"})
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"
    assert client.patch(url, json={"status": "preparing"}).status_code == 409


def test_status_update_errors(client, make_payload):
    order = _create(client, make_payload)
    url = f"/api/orders/{order['id']}/status"

    assert client.patch(url, json={}).status_code == 400
    assert client.patch(url, json={"status": "stirred"}).status_code == 400
    assert client.patch("/api/orders/99/status", json={"status": "confirmed"}).status_code == 404


def test_tracking_and_history(client, make_payload):
    order = _create(client, make_payload)
    client.patch(f"/api/orders/{order['id']}/status", json={"status": "confirmed"})

    tracking = client.get(f"/api/orders/{order['id']}/tracking").json()
    assert tracking["progress"] == 25
    assert tracking["nextStatuses"] == ["preparing", "canceled"]
    assert tracking["estimatedDelivery"].endswith(("AM", "PM"))

    history = client.get(f"/api/orders/{order['id']}/history").json()
    assert [(h["fromStatus"], h["toStatus"], h["source"]) for h in history] == [("pending", "confirmed", "lifecycle")]

    assert client.get("/api/orders/99/tracking").status_code == 404
    assert client.get("/api/orders/99/history").status_code == 404


NIGHTCAP_KEY = {"X-Partner-Key": "nightcap-key"}
VELVET_KEY = {"X-Partner-Key": "velvet-key"}


def test_partner_override(client, make_payload):
    order = _create(client, make_payload)
    url = f"/api/partner/orders/{order['id']}/status"

    assert client.patch(url, json={"status": "delivered"}).status_code == 403
    assert client.patch(url, json={"status": "delivered"}, headers={"X-Partner-Key": "wrong"}).status_code == 403

    response = client.patch(url, json={"status": "delivered", "reason": "handed over at the bar"}, headers=NIGHTCAP_KEY)
    assert response.status_code == 200
    assert response.json()["status"] == "delivered"

    (entry,) = client.get(f"/api/orders/{order['id']}/history").json()
    assert entry["source"] == "override"
    assert entry["actor"] == "partner:The Nightcap Lounge"
    assert entry["reason"] == "handed over at the bar"

    missing = client.patch("/api/partner/orders/99/status", json={"status": "canceled"}, headers=NIGHTCAP_KEY)
    assert missing.status_code == 404


def test_partner_cannot_override_other_bars_order(client, make_payload):
    order = _create(client, make_payload)

    response = client.patch(f"/api/partner/orders/{order['id']}/status", json={"status": "delivered"}, headers=VELVET_KEY)

    assert response.status_code == 403
    assert response.json() == {"message": "Not authorized to update this order"}
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == "pending"
    assert client.get(f"/api/orders/{order['id']}/history").json() == []


def test_partner_orders_scoped_to_own_bar(client, make_payload):
    _create(client, make_payload)
    other_item = dict(make_payload()["items"][0], barName="Velvet Room")
    _create(client, make_payload, items=[other_item])

    response = client.get("/api/partner/orders", headers=VELVET_KEY)
    assert response.status_code == 200
    assert [o["items"][0]["barName"] for o in response.json()] == ["Velvet Room"]

    named = client.get("/api/partner/orders", params={"barName": "Velvet Room"}, headers=VELVET_KEY)
    assert named.json() == response.json()

    assert client.get("/api/partner/orders", params={"barName": "The Nightcap Lounge"}, headers=VELVET_KEY).status_code == 403
    assert client.get("/api/partner/orders", params={"barName": "Velvet Room"}).status_code == 403


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "store": "memory", "connections": 0}
