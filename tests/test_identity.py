from datetime import timedelta

import pytest

from models.identity import UserMapping
from shared import time
from shared.identity import PhoneIdentityResolver
from store.identity_store import InMemoryIdentityStore


@pytest.fixture
def store():
    return InMemoryIdentityStore()


@pytest.fixture
def resolver(store):
    return PhoneIdentityResolver(store)


def test_unknown_and_unverified_look_the_same(store, resolver):
    store.put(UserMapping(user_id="u-unverified", phone="6281111111111", is_verified=False))

    assert resolver.resolve("081111111111") is None
    assert resolver.resolve("082222222222") is None


def test_verified_mapping_resolves_from_any_format(store, resolver):
    store.put(UserMapping(user_id="u1", phone="6281234567890", is_verified=True))

    for raw in ("081234567890", "+62 812-3456-7890", "6281234567890@c.us"):
        mapping = resolver.resolve(raw)
        assert mapping is not None
        assert mapping.user_id == "u1"


def test_verification_is_single_use(fake_clock, store, resolver):
    resolver.create_pending_mapping("u1", "081234567890", "123456")

    assert resolver.verify("+6281234567890", "123456") is True
    assert resolver.verify("+6281234567890", "123456") is False

    mapping = store.get("6281234567890")
    assert mapping.is_verified
    assert mapping.verified_at == fake_clock
    assert mapping.verification_code is None
    assert mapping.verification_expires_at is None
    assert resolver.resolve("081234567890").user_id == "u1"


def test_wrong_code_is_rejected(fake_clock, resolver):
    resolver.create_pending_mapping("u1", "081234567890", "123456")

    assert resolver.verify("081234567890", "000000") is False
    assert resolver.resolve("081234567890") is None


def test_expired_code_is_rejected(fake_clock, resolver):
    resolver.create_pending_mapping("u1", "081234567890", "123456")

    time.advance_fake_utcnow(timedelta(minutes=10, seconds=1))

    assert resolver.verify("081234567890", "123456") is False


def test_code_expires_after_ten_minutes(fake_clock, resolver):
    mapping = resolver.create_pending_mapping("u1", "081234567890", "123456")

    assert mapping.phone == "6281234567890"
    assert mapping.verification_expires_at == fake_clock + timedelta(minutes=10)
    assert not mapping.is_verified


def test_new_code_replaces_old_one(fake_clock, resolver):
    resolver.create_pending_mapping("u1", "081234567890", "111111")
    resolver.create_pending_mapping("u1", "081234567890", "222222")

    assert resolver.verify("081234567890", "111111") is False
    assert resolver.verify("081234567890", "222222") is True


def test_create_pending_mapping_rejects_garbage(resolver):
    with pytest.raises(ValueError):
        resolver.create_pending_mapping("u1", "no digits", "123456")
