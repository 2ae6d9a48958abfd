from datetime import timedelta

import pytest

from b2b_starter.core.timeutil import utcnow
from b2b_starter.models.security import RefreshToken
from b2b_starter.services.refresh_token_store import SqlRefreshTokenStore
from b2b_starter.services.user_store import SqlUserStore


@pytest.fixture
def user_id(session_factory):
    return SqlUserStore(session_factory).create("bob@example.com", "hash").id


@pytest.fixture
def store(session_factory):
    return SqlRefreshTokenStore(session_factory)


def test_create_and_lookup(store, user_id):
    store.create(user_id, "a" * 64, utcnow() + timedelta(days=7), ip_address="10.0.0.1", user_agent="pytest")
    record = store.get_by_hash("a" * 64)
    assert record is not None
    assert record.user_id == user_id
    assert record.revoked is False
    assert record.user_agent == "pytest"
    assert record.is_usable()


def test_expired_rows_are_not_returned(store, user_id):
    store.create(user_id, "b" * 64, utcnow() - timedelta(seconds=1))
    assert store.get_by_hash("b" * 64) is None


def test_revoked_rows_are_still_returned(store, user_id):
    store.create(user_id, "c" * 64, utcnow() + timedelta(days=1))
    assert store.revoke("c" * 64) is True
    record = store.get_by_hash("c" * 64)
    assert record.revoked is True
    assert record.revoked_at is not None
    assert not record.is_usable()


def test_revoke_succeeds_only_once(store, user_id):
    store.create(user_id, "d" * 64, utcnow() + timedelta(days=1))
    assert store.revoke("d" * 64) is True
    assert store.revoke("d" * 64) is False
    assert store.revoke("unknown") is False


def test_revoke_all_for_user_counts_live_tokens(store, user_id):
    for ch in "efg":
        store.create(user_id, ch * 64, utcnow() + timedelta(days=1))
    store.revoke("e" * 64)
    assert store.revoke_all_for_user(user_id) == 2
    assert store.revoke_all_for_user(user_id) == 0


def test_delete_expired_respects_retention(store, user_id, session_factory):
    now = utcnow()
    store.create(user_id, "h" * 64, now - timedelta(days=10))
    store.create(user_id, "i" * 64, now - timedelta(days=1))
    store.create(user_id, "j" * 64, now + timedelta(days=1))
    store.create(user_id, "k" * 64, now + timedelta(days=1))
    store.revoke("j" * 64)
    store.revoke("k" * 64)
    with session_factory() as db:
        db.query(RefreshToken).filter(RefreshToken.token_hash == "k" * 64).update(
            {RefreshToken.revoked_at: now - timedelta(days=8)}, synchronize_session=False
        )
        db.commit()

    assert store.delete_expired(timedelta(days=7)) == 1

    with session_factory() as db:
        remaining = {row.token_hash[0] for row in db.query(RefreshToken).all()}
    # Revoked rows that have not expired are kept for reuse detection.
    assert remaining == {"i", "j", "k"}


def test_tokens_are_removed_with_their_user(store, user_id, session_factory):
    store.create(user_id, "l" * 64, utcnow() + timedelta(days=1))
    SqlUserStore(session_factory).delete(user_id)
    with session_factory() as db:
        assert db.query(RefreshToken).count() == 0
