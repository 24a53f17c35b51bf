import pytest
from sqlalchemy import select

from issue_watcher.models import Lock
from issue_watcher.services import LockService
from issue_watcher.timeutils import EPOCH


@pytest.fixture
def locks(database, clock):
    return LockService(database, clock)


def test_second_acquire_within_lease_fails(locks, clock):
    assert locks.acquire("llm_worker", ttl_seconds=60) is True
    clock.advance(59)
    assert locks.acquire("llm_worker", ttl_seconds=60) is False


def test_expired_lease_is_reclaimed(locks, clock):
    assert locks.acquire("llm_worker", ttl_seconds=60, owner="first") is True
    clock.advance(61)

    assert locks.acquire("llm_worker", ttl_seconds=60, owner="second") is True


def test_release_frees_the_lock_immediately(locks, database):
    locks.acquire("llm_worker", ttl_seconds=600, owner="worker")
    locks.release("llm_worker")

    with database.session() as session:
        lock = session.scalar(select(Lock).where(Lock.name == "llm_worker"))
        assert lock.lease_expires_at == EPOCH
        assert lock.owner is None
    assert locks.acquire("llm_worker", ttl_seconds=600) is True


def test_locks_are_independent_by_name(locks):
    assert locks.acquire("a", ttl_seconds=60) is True
    assert locks.acquire("b", ttl_seconds=60) is True


def test_hold_releases_on_error(locks):
    with pytest.raises(RuntimeError):
        with locks.hold("llm_worker", ttl_seconds=600) as acquired:
            assert acquired is True
            raise RuntimeError("tick crashed")

    assert locks.acquire("llm_worker", ttl_seconds=600) is True


def test_hold_does_not_release_a_lock_it_did_not_take(locks):
    locks.acquire("llm_worker", ttl_seconds=600, owner="other")

    with locks.hold("llm_worker", ttl_seconds=600) as acquired:
        assert acquired is False

    assert locks.acquire("llm_worker", ttl_seconds=600) is False
