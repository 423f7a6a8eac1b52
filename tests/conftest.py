import random
from datetime import datetime, timedelta, timezone

import pytest

from database import MemoryStorage
from schemas import Pet
from services import CryptoPetService

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_pet():
    def _make(**overrides):
        fields = dict(id="pet_1", user_id="u1", name="Buddy", type="dog", last_updated=T0, created_at=T0)
        fields.update(overrides)
        return Pet(**fields)
    return _make


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def service(storage, clock):
    return CryptoPetService(storage, clock=clock, rng=random.Random(7))
