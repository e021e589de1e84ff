"""Tests for the REST API."""

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api import create_app

from conftest import BIDDER, BUYER, OTHER, SELLER, T0


@pytest.fixture
def client(market):
    return TestClient(create_app(market, run_workers=False))


def create_listing(client, **overrides):
    body = {"asset_id": "ASSET-1", "seller_address": SELLER, "type": "fixed", "price": "100"}
    body.update(overrides)
    response = client.post("/listings", json=body)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_root_and_health(client):
    assert client.get("/").json()["name"] == "Vortex Marketplace API"

    health = client.get("/health").json()
    assert health["success"] is True
    assert health["data"]["status"] == "healthy"
    assert health["data"]["store"] == "memory"


def test_create_and_get_listing(client):
    listing = create_listing(client, collection_id="COLL-1")
    assert listing["status"] == "active"
    assert listing["current_price"] == "100"

    response = client.get(f"/listings/{listing['id']}")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["id"] == listing["id"]
    assert "timestamp" in body


def test_missing_listing_is_404(client):
    response = client.get("/listings/LST_MISSING")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "listing_not_found"


def test_request_validation_maps_to_400(client):
    response = client.post("/listings", json={"asset_id": "ASSET-1", "type": "raffle"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = client.post("/listings", json={"asset_id": "ASSET-1", "seller_address": SELLER, "price": "0"})
    assert response.status_code == 400


def test_browse_listings(client):
    create_listing(client, asset_id="A-1", price="30")
    create_listing(client, asset_id="A-2", price="10")

    data = client.get("/listings", params={"sort_by": "price", "limit": 1}).json()["data"]
    assert data["total"] == 2
    assert data["has_more"] is True
    assert data["listings"][0]["asset_id"] == "A-2"

    assert client.get("/listings", params={"sort_by": "hype"}).status_code == 400


def test_auction_bidding_flow(client):
    listing = create_listing(
        client,
        asset_id="ASSET-E",
        type="english_auction",
        price=None,
        starting_price="100",
        ends_at=(T0 + timedelta(days=1)).isoformat(),
    )

    low = client.post(f"/listings/{listing['id']}/bid", json={"bidder_address": BIDDER, "amount": "105"})
    assert low.status_code == 400
    assert low.json()["error"] == "bid_too_low"

    ok = client.post(f"/listings/{listing['id']}/bid", json={"bidder_address": BIDDER, "amount": "110"})
    assert ok.status_code == 200
    assert ok.json()["data"]["sale"] is None

    bids = client.get(f"/listings/{listing['id']}/bids").json()["data"]
    assert [Decimal(bid["amount"]) for bid in bids] == [Decimal("110")]

    sale = client.post(f"/listings/{listing['id']}/accept-bid", json={"seller_address": SELLER})
    assert sale.status_code == 200
    assert sale.json()["data"]["buyer_address"] == BIDDER


def test_buy_and_double_buy(client):
    listing = create_listing(client)

    first = client.post(f"/listings/{listing['id']}/buy", json={"buyer_address": BUYER})
    assert first.status_code == 200
    assert first.json()["data"]["status"] == "settled"

    second = client.post(f"/listings/{listing['id']}/buy", json={"buyer_address": OTHER})
    assert second.status_code == 400
    assert second.json()["error"] == "listing_already_settled"


def test_cancel_listing(client):
    listing = create_listing(client)

    assert client.delete(f"/listings/{listing['id']}").status_code == 400
    denied = client.delete(f"/listings/{listing['id']}", params={"seller_address": OTHER})
    assert denied.json()["error"] == "unauthorized"

    response = client.delete(f"/listings/{listing['id']}", params={"seller_address": SELLER})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"


def test_favorite_toggle(client):
    listing = create_listing(client)
    url = f"/listings/{listing['id']}/favorite"
    assert client.post(url, json={"address": OTHER}).json()["data"]["favorited"] is True
    assert client.post(url, json={"address": OTHER}).json()["data"]["favorite_count"] == 0


def test_offer_flow(client):
    create_listing(client)

    made = client.post("/offers", json={"asset_id": "ASSET-1", "buyer_address": BUYER, "amount": "80"})
    assert made.status_code == 201
    offer_id = made.json()["data"]["id"]

    listed = client.get("/offers", params={"asset_id": "ASSET-1"}).json()["data"]
    assert [offer["id"] for offer in listed] == [offer_id]

    denied = client.post(f"/offers/{offer_id}/accept", json={"seller_address": OTHER})
    assert denied.status_code == 400

    accepted = client.post(f"/offers/{offer_id}/accept", json={"seller_address": SELLER})
    assert accepted.status_code == 200
    assert client.get(f"/offers/{offer_id}").json()["data"]["status"] == "accepted"

    assert client.get("/offers/OFR_MISSING").status_code == 404


def test_market_endpoints(client):
    listing = create_listing(client, collection_id="COLL-1")
    client.post(f"/listings/{listing['id']}/buy", json={"buyer_address": BUYER})

    stats = client.get("/stats").json()["data"]
    assert stats["total_sales"] == 1

    history = client.get("/price-history/ASSET-1").json()["data"]
    assert len(history) == 1

    trending = client.get("/collections/trending").json()["data"]
    assert trending[0]["collection_id"] == "COLL-1"
    assert client.get("/collections/top", params={"period": "forever"}).status_code == 400

    activity = client.get("/activity", params={"type": "sale"}).json()["data"]
    assert activity["total"] == 1

    assert client.get("/sales/pending").json()["data"] == []


def test_webhook_endpoint(client):
    response = client.post("/webhooks", json={
        "type": "product.listed",
        "data": {"asset_id": "WC-1", "seller_address": SELLER, "price": "5"},
    })
    assert response.status_code == 200
    assert response.json()["data"]["action_taken"] == "listing_created"

    bad = client.post("/webhooks", json={"type": "product.exploded", "data": {}})
    assert bad.status_code == 400
