"""Shared fixtures: an in-memory marketplace on a controllable clock."""

import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from config import DEFAULTS, validate_settings
from database import MemoryStore
from marketplace import Marketplace
from models import ListingSpec, ListingType

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

SELLER = "SELLER_7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
BUYER = "BUYER_9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
BIDDER = "BIDDER_4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
OTHER = "OTHER_HN7cABqLq46Es1jh92dQQisAq662SmxELLLsHHe4YWrH"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePayments:
    """Payment executor double recording every transfer.

    Like the real executor it moves funds at most once per idempotency key.
    ``delay`` makes new transfers block the calling thread for that many
    seconds before landing.
    """

    def __init__(self):
        self.fail = False
        self.delay = 0
        self.transfers = []
        self._completed = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def transfer_funds(self, from_address, to_address, amount, currency, idempotency_key=None):
        if self.fail:
            raise ConnectionError("payment executor unreachable")
        with self._lock:
            if idempotency_key is not None and idempotency_key in self._completed:
                return {'signature': self._completed[idempotency_key]}
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            if idempotency_key is not None and idempotency_key in self._completed:
                return {'signature': self._completed[idempotency_key]}
            signature = f"sig_{next(self._counter)}"
            self.transfers.append((from_address, to_address, Decimal(amount), currency))
            if idempotency_key is not None:
                self._completed[idempotency_key] = signature
        return {'signature': signature}


@pytest.fixture
def settings():
    return validate_settings(dict(DEFAULTS))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def market(settings, payments, clock):
    """Marketplace backed by a MemoryStore."""
    return Marketplace(store=MemoryStore(), settings=settings, payments=payments, clock=clock)


def fixed_spec(asset_id="ASSET-1", price="100", **overrides):
    fields = dict(asset_id=asset_id, seller_address=SELLER, type=ListingType.FIXED, price=Decimal(price))
    fields.update(overrides)
    return ListingSpec(**fields)


def english_spec(asset_id="ASSET-E", starting_price="10", hours=24, **overrides):
    fields = dict(
        asset_id=asset_id,
        seller_address=SELLER,
        type=ListingType.ENGLISH,
        starting_price=Decimal(starting_price),
        ends_at=T0 + timedelta(hours=hours),
    )
    fields.update(overrides)
    return ListingSpec(**fields)


def dutch_spec(asset_id="ASSET-D", **overrides):
    """100 falling to 10 over ten hourly steps."""
    fields = dict(
        asset_id=asset_id,
        seller_address=SELLER,
        type=ListingType.DUTCH,
        starting_price=Decimal("100"),
        ending_price=Decimal("10"),
        price_drop_interval=60,
        ends_at=T0 + timedelta(hours=10),
    )
    fields.update(overrides)
    return ListingSpec(**fields)
