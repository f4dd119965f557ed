import numpy as np
import pytest

from core.backends import BackendKind, CachedImage, ImageMetadata
from core.errors import ContractError
from core.load_ops import Direction, LoadKind
from core.prefetch import LoadScheduler, PaneQueues, PrefetchConfig
from core.window_cache import WindowedCache


def _payload(index: int) -> CachedImage:
    return CachedImage(BackendKind.CPU, index, np.zeros((1, 1, 4), np.uint8), ImageMetadata(1, 1, 4))


def _cache(count: int = 20, cache_count: int = 2, initial_index: int = 10) -> WindowedCache:
    cache = WindowedCache(
        [f"img_{idx}.png" for idx in range(count)], cache_count, initial_index=initial_index, strict=True
    )
    for index, slot in cache.holes():
        cache.fill(index, _payload(index), slot)
    return cache


def _scheduler(**config) -> LoadScheduler:
    return LoadScheduler(PrefetchConfig(**config), strict=True)


def test_dispatch_runs_oldest_first():
    sched = _scheduler()
    caches = {0: _cache()}
    load_pos = sched.create(LoadKind.LOAD_POS, (0,), positions=((10, 2),))
    load_next = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    assert sched.enqueue(load_pos, caches)
    assert sched.enqueue(load_next, caches)
    assert sched.dispatch() == [load_pos, load_next]
    assert list(sched.queues(0).in_flight) == [load_pos, load_next]


def test_shift_operations_run_one_at_a_time():
    sched = _scheduler()
    caches = {0: _cache()}
    first = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    second = sched.create(LoadKind.LOAD_PREVIOUS, (0,), (7,))
    sched.enqueue(first, caches)
    sched.enqueue(second, caches)

    assert sched.dispatch() == [first]
    assert sched.dispatch() == []
    assert sched.complete(first) == (0,)
    assert sched.dispatch() == [second]


def test_duplicate_request_is_skipped():
    sched = _scheduler()
    caches = {0: _cache()}
    assert sched.enqueue(sched.create(LoadKind.LOAD_NEXT, (0,), (13,)), caches)
    assert not sched.enqueue(sched.create(LoadKind.LOAD_NEXT, (0,), (13,)), caches)
    assert len(sched.queues(0).pending) == 1


def test_full_queue_drops_shift_but_accepts_load_pos():
    sched = _scheduler(max_pending=1)
    caches = {0: _cache()}
    assert sched.enqueue(sched.create(LoadKind.LOAD_NEXT, (0,), (13,)), caches)
    assert not sched.enqueue(sched.create(LoadKind.LOAD_PREVIOUS, (0,), (7,)), caches)
    assert sched.dropped == 1
    assert sched.enqueue(sched.create(LoadKind.LOAD_POS, (0,), positions=((9, 1),)), caches)


def test_load_next_blocked_at_far_edge_with_previous_in_flight():
    sched = _scheduler()
    cache = _cache()
    caches = {0: cache}
    previous = sched.create(LoadKind.LOAD_PREVIOUS, (0,), (cache.prev_index_to_load(),))
    assert sched.enqueue(previous, caches)
    assert sched.dispatch() == [previous]

    assert cache.render_next()
    assert cache.render_next()
    assert cache.current_offset == cache.cache_count

    load_next = sched.create(LoadKind.LOAD_NEXT, (0,), (cache.next_index_to_load(),))
    assert sched.is_blocking(load_next, caches)
    assert not sched.enqueue(load_next, caches)


def test_load_next_allowed_at_far_edge_without_opposite_work():
    sched = _scheduler()
    cache = _cache(initial_index=12)
    assert cache.current_offset == 0
    cache.render_next()
    cache.render_next()
    op = sched.create(LoadKind.LOAD_NEXT, (0,), (cache.next_index_to_load(),))
    assert not sched.is_blocking(op, {0: cache})


def test_shift_that_would_leave_offset_range_is_blocking():
    sched = _scheduler()
    cache = _cache(initial_index=0)
    assert cache.current_offset == -2
    op = sched.create(LoadKind.LOAD_NEXT, (0,), (5,))
    assert sched.is_blocking(op, {0: cache})
    load_pos = sched.create(LoadKind.LOAD_POS, (0,), positions=((1, 1),))
    assert not sched.is_blocking(load_pos, {0: cache})


def test_multi_pane_operation_waits_for_every_pane():
    sched = _scheduler()
    caches = {0: _cache(), 1: _cache()}
    solo = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    shared = sched.create(LoadKind.LOAD_NEXT, (0, 1), (13, 13))
    assert sched.enqueue(solo, caches)
    assert sched.enqueue(shared, caches)

    assert sched.dispatch() == [solo]
    assert list(sched.queues(1).pending) == [shared]
    sched.complete(solo)
    assert sched.dispatch() == [shared]
    assert sched.complete(shared) == (0, 1)
    assert sched.is_idle()


def test_cancelling_one_pane_releases_shared_operation():
    sched = _scheduler()
    caches = {0: _cache(), 1: _cache()}
    running = sched.create(LoadKind.LOAD_NEXT, (1,), (13,))
    sched.enqueue(running, caches)
    sched.dispatch()
    shared = sched.create(LoadKind.LOAD_PREVIOUS, (0, 1), (7, 7))
    sched.enqueue(shared, caches)
    assert sched.dispatch() == []

    sched.cancel(1)
    assert sched.dispatch() == [shared]
    assert sched.complete(shared) == (0,)


def test_cancelled_in_flight_completion_is_ignored():
    sched = _scheduler()
    caches = {0: _cache()}
    op = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    sched.enqueue(op, caches)
    sched.dispatch()
    assert sched.cancel(0) == [op]
    assert not sched.is_live(op, 0)
    assert sched.complete(op) == ()
    assert sched.is_idle()


def test_completion_of_unknown_operation():
    sched = _scheduler()
    op = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    with pytest.raises(ContractError):
        sched.complete(op)

    lenient = LoadScheduler(PrefetchConfig(), strict=False)
    assert lenient.complete(op) == ()


def test_cancel_direction_keeps_backfills():
    sched = _scheduler()
    caches = {0: _cache()}
    backfill = sched.create(LoadKind.LOAD_POS, (0,), positions=((11, 3),))
    forward = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    sched.enqueue(backfill, caches)
    sched.enqueue(forward, caches)

    assert sched.cancel_direction(0, Direction.NEXT) == [forward]
    assert sched.has_pending_for(0, 11)
    assert not sched.has_pending_for(0, 13)


def test_pane_queue_limits():
    config = PrefetchConfig(max_pending=1, max_in_flight=1)
    sched = _scheduler(max_pending=1, max_in_flight=1)
    queues = PaneQueues()
    assert queues.is_below_limits(config)
    op = sched.create(LoadKind.LOAD_NEXT, (0,), (13,))
    queues.in_flight.append(op)
    assert not queues.is_below_limits(config)
    assert queues.has_shift_in_flight()
