"""
Unit tests for expert_lock.py.

Coverage:
1) Key format
2) Process-local exclusion
3) Redis acquire/release with token ownership
4) Graceful degradation when Redis errors
"""

from typing import Dict
from unittest.mock import MagicMock, patch

import pytest

from servitech.core.exceptions import LockUnavailableException
from servitech.core.expert_lock import _lock_key, _local_lock, expert_lock


def _fake_redis() -> MagicMock:
    store: Dict[str, str] = {}
    client = MagicMock()

    def _set(key, value, nx=False, ex=None):
        if nx and key in store:
            return False
        store[key] = value
        return True

    client.set.side_effect = _set
    client.get.side_effect = store.get
    client.delete.side_effect = lambda key: store.pop(key, None)
    client.store = store
    return client


@pytest.mark.unit
class TestKeyFormat:
    def test_lock_key(self):
        assert _lock_key("01HEXPERT") == "servitech:lock:expert:01HEXPERT:booking"


@pytest.mark.unit
class TestLocalExclusion:
    def test_second_holder_times_out(self):
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=None):
            with expert_lock("expert-local-1", wait_s=0.05):
                with pytest.raises(LockUnavailableException) as exc_info:
                    with expert_lock("expert-local-1", wait_s=0.05):
                        pass
        assert exc_info.value.status_code == 409

    def test_different_experts_do_not_contend(self):
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=None):
            with expert_lock("expert-local-2", wait_s=0.05):
                with expert_lock("expert-local-3", wait_s=0.05):
                    pass

    def test_released_after_exception(self):
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=None):
            with pytest.raises(RuntimeError):
                with expert_lock("expert-local-4", wait_s=0.05):
                    raise RuntimeError("boom")
        assert not _local_lock("expert-local-4").locked()


@pytest.mark.unit
class TestRedisLock:
    def test_acquire_and_release_own_token(self):
        client = _fake_redis()
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=client):
            with expert_lock("expert-redis-1", wait_s=0.05, ttl_s=12):
                assert _lock_key("expert-redis-1") in client.store

        _, kwargs = client.set.call_args
        assert kwargs == {"nx": True, "ex": 12}
        client.delete.assert_called_once_with(_lock_key("expert-redis-1"))
        assert client.store == {}

    def test_held_elsewhere_raises_and_frees_local_lock(self):
        client = _fake_redis()
        client.store[_lock_key("expert-redis-2")] = "other-worker"
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=client):
            with pytest.raises(LockUnavailableException):
                with expert_lock("expert-redis-2", wait_s=0.05):
                    pass

        assert not _local_lock("expert-redis-2").locked()
        client.delete.assert_not_called()
        assert client.store[_lock_key("expert-redis-2")] == "other-worker"

    def test_expired_key_owned_by_other_is_not_deleted(self):
        client = _fake_redis()
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=client):
            with expert_lock("expert-redis-3", wait_s=0.05):
                # TTL lapsed and another worker took the key
                client.store[_lock_key("expert-redis-3")] = "other-worker"
        client.delete.assert_not_called()

    def test_redis_error_degrades_to_local(self):
        client = MagicMock()
        client.set.side_effect = ConnectionError("redis down")
        entered = False
        with patch("servitech.core.expert_lock._get_sync_redis", return_value=client):
            with expert_lock("expert-redis-4", wait_s=0.05):
                entered = True
        assert entered
        client.delete.assert_not_called()
        assert not _local_lock("expert-redis-4").locked()
