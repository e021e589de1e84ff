"""Tests for the payment executor JSON-RPC client."""

import threading
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from rpc import NodeAuthError, NodeConnectionError, PaymentError, PaymentRPC
from rpc.registries import CollectionRegistry, CreatorRegistry


def rpc_response(result=None, error=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = {"result": result, "error": error, "id": 1}
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def client():
    return PaymentRPC(url="http://executor.local", user="rpc", password="secret", timeout=5)


def test_transfer_funds_posts_jsonrpc(client):
    with patch.object(client.session, "post", return_value=rpc_response("5xSig")) as post:
        result = client.transfer_funds("BUYER", "SELLER", Decimal("92.5"), "USDC")

    assert result == {"signature": "5xSig"}
    payload = post.call_args.kwargs["json"]
    assert payload["method"] == "transferfunds"
    assert payload["params"] == ["BUYER", "SELLER", "92.5", "USDC"]
    assert client.session.auth == ("rpc", "secret")


def test_transfer_funds_sends_idempotency_key(client):
    with patch.object(client.session, "post", return_value=rpc_response("5xSig")) as post:
        client.transfer_funds("BUYER", "SELLER", Decimal("92.5"), "USDC", "SALE_1")

    assert post.call_args.kwargs["json"]["params"] == ["BUYER", "SELLER", "92.5", "USDC", "SALE_1"]


def test_sessions_are_per_thread(client):
    sessions = []
    worker = threading.Thread(target=lambda: sessions.append(client.session))
    worker.start()
    worker.join()

    assert sessions[0] is not client.session
    assert sessions[0].auth == client.session.auth
    assert client.session is client.session


def test_executor_error_is_raised(client):
    error = {"code": -6, "message": "Insufficient funds"}
    with patch.object(client.session, "post", return_value=rpc_response(error=error)):
        with pytest.raises(PaymentError) as exc_info:
            client.transfer_funds("BUYER", "SELLER", Decimal("1"), "USDC")
    assert exc_info.value.code == -6


def test_auth_failure(client):
    with patch.object(client.session, "post", return_value=rpc_response(status_code=401)):
        with pytest.raises(NodeAuthError):
            client.ping()


def test_connection_failure(client):
    with patch.object(client.session, "post", side_effect=requests.exceptions.ConnectionError()):
        with pytest.raises(NodeConnectionError):
            client.ping()


def test_registries_accumulate():
    collections = CollectionRegistry()
    collections.record_sale("COLL-1", Decimal("10"), "USDC")
    snapshot = collections.record_sale("COLL-1", Decimal("4"), "USDC")
    assert snapshot["sales_count"] == 2
    assert snapshot["volume"] == {"USDC": Decimal("14")}
    assert snapshot["floor_price"] == {"USDC": Decimal("4")}
    assert collections.get("missing") is None

    creators = CreatorRegistry()
    creators.record_sale("CREATOR", Decimal("0.5"))
    assert creators.get("CREATOR")["royalties"] == Decimal("0.5")
