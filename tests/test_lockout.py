import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from authcore.core.exceptions import StoreUnavailableError
from authcore.services.fast_store import RedisFastStore
from authcore.services.rate_limiter import LockoutService, RequestThrottle


class BrokenRedis(fakeredis.FakeRedis):
    """Connects fine, then fails every command."""

    def execute_command(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


@pytest.fixture
def broken_store():
    return RedisFastStore(BrokenRedis(decode_responses=True), key_prefix="test:")


def test_counter_expiry_is_set_once_when_window_opens(fast_store, redis_client):
    assert fast_store.incr_with_expiry("counter", 100) == 1
    redis_client.expire("test:counter", 40)
    assert fast_store.incr_with_expiry("counter", 100) == 2
    assert 0 < redis_client.ttl("test:counter") <= 40


def test_lock_engages_at_threshold(lockout):
    for attempt in range(1, 5):
        assert lockout.record_failure(42) == attempt
        assert not lockout.is_locked(42)

    assert lockout.record_failure(42) == 5
    assert lockout.is_locked(42)
    assert 0 < lockout.retry_after(42) <= 1800


def test_lock_flag_has_its_own_ttl(lockout, redis_client):
    for _ in range(5):
        lockout.record_failure(7)
    assert redis_client.ttl("test:account_locked:7") > 0
    redis_client.delete("test:login_attempts:7")
    assert lockout.is_locked(7)


def test_clear_removes_counter_and_lock(lockout):
    for _ in range(5):
        lockout.record_failure(3)
    lockout.clear(3)
    assert not lockout.is_locked(3)
    assert lockout.record_failure(3) == 1


def test_lockouts_are_per_account(lockout):
    for _ in range(5):
        lockout.record_failure(1)
    assert lockout.is_locked(1)
    assert not lockout.is_locked(2)


def test_lock_check_fails_closed(broken_store):
    lockout = LockoutService(broken_store, max_attempts=5)
    assert lockout.is_locked(1) is True
    with pytest.raises(StoreUnavailableError):
        lockout.record_failure(1)


def test_throttle_allows_up_to_limit(fast_store):
    throttle = RequestThrottle(fast_store)
    results = [throttle.allow("login:min", "10.0.0.1", 3, 60) for _ in range(4)]
    assert results == [True, True, True, False]
    assert throttle.allow("login:min", "10.0.0.2", 3, 60)


def test_throttle_fails_open(broken_store):
    throttle = RequestThrottle(broken_store)
    assert throttle.allow("login:min", "10.0.0.1", 1, 60)


def test_fast_store_errors_are_translated(broken_store):
    with pytest.raises(StoreUnavailableError):
        broken_store.get("anything")
    with pytest.raises(StoreUnavailableError):
        broken_store.ping()
