from uuid import uuid4

import pytest

FARMER = {"X-User-Id": "S", "X-User-Name": "Sita Farms", "X-User-Role": "farmer"}


def bidder(user_id):
    return {"X-User-Id": user_id, "X-User-Name": f"Bidder {user_id}"}


PRODUCT = {
    "name": "Alphonso mangoes",
    "description": "Hand picked Alphonso mangoes, dozen box",
    "category": "Fruit",
    "unit": "dozen",
    "starting_price": "100",
    "image_url": "https://images.example.com/mango.jpg",
}


async def list_product(client, **overrides):
    resp = await client.post("/commands/products", json={**PRODUCT, **overrides}, headers=FARMER)
    assert resp.status_code == 200, resp.text
    return resp.json()["product_id"]


async def bid(client, product_id, user_id, amount):
    return await client.post(
        f"/commands/products/{product_id}/bids",
        json={"bid_amount": amount},
        headers=bidder(user_id),
    )


async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok", "service": "marketplace-service"}


async def test_listing_requires_identity(client):
    resp = await client.post("/commands/products", json=PRODUCT)
    assert resp.status_code == 401


async def test_consumers_cannot_list(client):
    resp = await client.post(
        "/commands/products", json=PRODUCT, headers={"X-User-Id": "C1", "X-User-Role": "consumer"}
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "not_a_farmer"


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "ab"},
        {"description": "too short"},
        {"starting_price": "0"},
        {"starting_price": "-5"},
        {"starting_price": "10.005"},
        {"image_url": "not a url"},
    ],
)
async def test_listing_validation(client, overrides):
    resp = await client.post(
        "/commands/products", json={**PRODUCT, **overrides}, headers=FARMER
    )
    assert resp.status_code == 422


async def test_product_detail_has_display_values(client):
    product_id = await list_product(client)

    resp = await client.get(f"/queries/products/{product_id}")
    assert resp.status_code == 200
    product = resp.json()
    assert product["name"] == "Alphonso mangoes"
    assert product["seller_name"] == "Sita Farms"
    assert product["current_price"] == "100.00"
    assert product["has_bids"] is False
    assert product["minimum_next_bid"] == "100.01"


async def test_bidding_scenario_over_http(client):
    product_id = await list_product(client)

    resp = await bid(client, product_id, "B1", "100")
    assert resp.status_code == 409
    assert resp.json()["code"] == "bid_too_low"
    assert resp.json()["minimum_required"] == "100.01"

    resp = await bid(client, product_id, "B1", "150")
    assert resp.status_code == 200
    assert resp.json()["current_highest_bid"] == "150.00"
    assert resp.json()["bid_count"] == 1

    resp = await client.post(
        f"/commands/products/{product_id}/bids", json={"bid_amount": "200"}, headers=FARMER
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "self_bid"

    resp = await bid(client, product_id, "B2", "150")
    assert resp.status_code == 409
    assert resp.json()["minimum_required"] == "150.01"

    resp = await bid(client, product_id, "B2", "175.50")
    assert resp.status_code == 200
    assert resp.json()["bid_count"] == 2

    aggregate = (await client.get(f"/queries/products/{product_id}/aggregate")).json()
    assert aggregate == {
        "seller_id": "S",
        "starting_price": "100.00",
        "current_highest_bid": "175.50",
        "bid_count": 2,
    }

    history = (await client.get(f"/queries/products/{product_id}/bids")).json()
    assert [(b["bidder_id"], b["bid_amount"]) for b in history] == [
        ("B2", "175.50"),
        ("B1", "150.00"),
    ]
    assert history[0]["bidder_name"] == "Bidder B2"

    product = (await client.get(f"/queries/products/{product_id}")).json()
    assert product["current_price"] == "175.50"
    assert product["has_bids"] is True
    assert product["minimum_next_bid"] == "175.51"


async def test_bid_requires_positive_amount(client):
    product_id = await list_product(client)
    resp = await bid(client, product_id, "B1", "0")
    assert resp.status_code == 422


async def test_bid_requires_identity(client):
    product_id = await list_product(client)
    resp = await client.post(f"/commands/products/{product_id}/bids", json={"bid_amount": "150"})
    assert resp.status_code == 401


async def test_unknown_product_is_404(client):
    missing = uuid4()
    resp = await bid(client, missing, "B1", "150")
    assert resp.status_code == 404
    assert resp.json()["code"] == "product_not_found"

    assert (await client.get(f"/queries/products/{missing}")).status_code == 404
    assert (await client.get(f"/queries/products/{missing}/aggregate")).status_code == 404
    assert (await client.get(f"/queries/products/{missing}/bids")).status_code == 404


async def test_list_products_newest_first_and_search(client):
    first = await list_product(client)
    second = await list_product(
        client,
        name="Basmati rice",
        description="Aged basmati rice, 10kg bag",
        category="Grain",
    )

    listing = (await client.get("/queries/products")).json()
    assert [p["id"] for p in listing] == [second, first]

    found = (await client.get("/queries/products", params={"q": "BASMATI"})).json()
    assert [p["id"] for p in found] == [second]

    by_seller = (await client.get("/queries/products", params={"q": "sita"})).json()
    assert len(by_seller) == 2


async def test_event_endpoints(client):
    product_id = await list_product(client)
    await bid(client, product_id, "B1", "150")

    events = (await client.get(f"/events/{product_id}")).json()
    assert [(e["event_type"], e["version"]) for e in events] == [
        ("ProductListed", 1),
        ("BidPlaced", 2),
    ]
    assert events[1]["event_data"]["bidder_id"] == "B1"

    all_events = (await client.get("/events")).json()
    assert len(all_events) == 2


async def test_search_treats_wildcards_literally(client):
    await list_product(client)

    assert (await client.get("/queries/products", params={"q": "%"})).json() == []
    assert (await client.get("/queries/products", params={"q": "_"})).json() == []

    product_id = await list_product(client, name="100% organic jaggery")
    found = (await client.get("/queries/products", params={"q": "100%"})).json()
    assert [p["id"] for p in found] == [product_id]
