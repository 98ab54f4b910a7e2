import threading

import pytest

from ilqrmpc.backend import SequentialBackend, ThreadPoolBackend, make_backend


@pytest.fixture(params=["sequential", "threads"])
def backend(request):
    b = SequentialBackend() if request.param == "sequential" else ThreadPoolBackend(3)
    yield b
    b.close()


def test_map_preserves_order(backend):
    assert backend.map(lambda i: i * i, range(20)) == [i * i for i in range(20)]


def test_map_returns_exceptions_in_place(backend):
    def fn(i):
        if i % 3 == 0:
            raise KeyError(i)
        return i

    out = backend.map(fn, range(7), return_exceptions=True)
    assert [isinstance(r, KeyError) for r in out] == [i % 3 == 0 for i in range(7)]
    assert out[1] == 1


def test_map_waits_for_all_tasks_before_raising(backend):
    seen = []
    lock = threading.Lock()

    def fn(i):
        with lock:
            seen.append(i)
        if i in (2, 5):
            raise ValueError(f"bad {i}")
        return i

    with pytest.raises(ValueError, match="bad 2"):
        backend.map(fn, range(8))
    assert sorted(seen) == list(range(8))


def test_make_backend_selects_strategy():
    seq = make_backend(1)
    assert isinstance(seq, SequentialBackend)
    assert not seq.parallel

    with make_backend(4) as pool:
        assert isinstance(pool, ThreadPoolBackend)
        assert pool.parallel
        assert pool.num_workers == 4


def test_closed_pool_rejects_work():
    pool = ThreadPoolBackend(2)
    pool.close()
    pool.close()
    with pytest.raises(RuntimeError):
        pool.map(abs, [1])


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        ThreadPoolBackend(0)


def test_pool_uses_worker_threads():
    names = set()
    lock = threading.Lock()

    def fn(_):
        with lock:
            names.add(threading.current_thread().name)

    with ThreadPoolBackend(2, thread_name_prefix="test-worker") as pool:
        pool.map(fn, range(10))
    assert names
    assert all(n.startswith("test-worker") for n in names)
