import threading
import time

import pytest
from sqlmodel import create_engine

from scholarfund.database import KeyValueStore
from scholarfund.errors import RateLimited, StorageFailure
from scholarfund.utils.keyed_lock import KeyedLock
from scholarfund.utils.rate_limit import AttemptLimiter


def test_store_get_set_and_overwrite(store):
    assert store.get('missing') is None
    store.set('user:1', {'id': '1', 'role': 'alumni'})
    store.set('student:rollNumber:42', '1')
    assert store.get('user:1') == {'id': '1', 'role': 'alumni'}
    assert store.get('student:rollNumber:42') == '1'
    store.set('user:1', {'id': '1', 'role': 'student'})
    assert store.get('user:1')['role'] == 'student'


def test_prefix_scan_is_literal(store):
    store.set('user:a', 1)
    store.set('user:b', 2)
    store.set('users', 3)
    store.set('user_x', 4)
    store.set('scholarship:a', 5)
    assert store.get_by_prefix('user:') == [1, 2]
    assert store.get_by_prefix('user_') == [4]
    assert store.get_by_prefix('nothing:') == []


def test_store_errors_become_storage_failure():
    # a fresh in-memory database has no kv_store table
    store = KeyValueStore(create_engine('sqlite://'))
    with pytest.raises(StorageFailure):
        store.get('user:1')
    with pytest.raises(StorageFailure):
        store.set('user:1', {})
    with pytest.raises(StorageFailure):
        store.get_by_prefix('user:')


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    inside = []
    overlap = []

    def work(key):
        with locks.hold(key):
            inside.append(key)
            if inside.count(key) > 1:
                overlap.append(key)
            time.sleep(0.01)
            inside.remove(key)

    threads = [threading.Thread(target=work, args=('s1',)) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlap == []
    assert len(locks) == 0


def test_keyed_lock_does_not_block_other_keys():
    locks = KeyedLock()
    with locks.hold('a'):
        acquired = threading.Event()

        def other():
            with locks.hold('b'):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=2)
        t.join()


def test_attempt_limiter_window():
    limiter = AttemptLimiter(2, 60)
    limiter.hit('k')
    limiter.hit('k')
    with pytest.raises(RateLimited) as info:
        limiter.hit('k')
    assert info.value.retry_after >= 1
    limiter.hit('other')
    limiter.reset()
    limiter.hit('k')


def test_concurrent_set_on_new_key_overwrites(store):
    errors = []
    for round_no in range(20):
        key = f'scholarship:race{round_no}'
        barrier = threading.Barrier(4)

        def write(n):
            barrier.wait()
            try:
                store.set(key, {'writer': n})
            except StorageFailure as exc:
                errors.append(exc)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get(key)['writer'] in range(4)
    assert errors == []
    assert len(store.get_by_prefix('scholarship:race')) == 20


def test_attempt_limiter_drops_idle_keys(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr('scholarfund.utils.rate_limit.time.monotonic', lambda: clock[0])
    limiter = AttemptLimiter(5, 60, max_tracked_keys=2)
    limiter.hit('10.0.0.1:/login')
    limiter.hit('10.0.0.2:/login')
    assert len(limiter) == 2
    clock[0] += 120
    limiter.hit('10.0.0.3:/login')
    assert len(limiter) == 1
