import pytest

from core.backends import CpuBackend
from core.decode_worker import DecodeWorker, jobs_for
from core.image_source import FileImageSource, list_image_paths
from core.load_ops import LoadEvent, LoadKind, LoadOperation, PreviewEvent


@pytest.fixture
def backend(image_dir):
    paths = list_image_paths(image_dir)
    return CpuBackend(FileImageSource(image_dir), paths + [str(image_dir / "missing.png")])


@pytest.fixture
def decode_worker():
    worker = DecodeWorker(max_workers=2)
    yield worker
    worker.close()


def test_jobs_for_operations():
    shift = LoadOperation(1, LoadKind.SHIFT_NEXT, (0, 1), (None, None))
    assert jobs_for(shift) == []

    load = LoadOperation(2, LoadKind.LOAD_NEXT, (0, 1), (5, None))
    assert [(job.pane_index, job.global_index) for job in jobs_for(load)] == [(0, 5)]

    load_pos = LoadOperation(3, LoadKind.LOAD_POS, (1,), positions=((4, 2), (5, 3)))
    assert [(job.pane_index, job.global_index, job.slot) for job in jobs_for(load_pos)] == [
        (1, 4, 2),
        (1, 5, 3),
    ]


def test_load_next_posts_single_final_event(decode_worker, backend):
    op = LoadOperation(1, LoadKind.LOAD_NEXT, (0,), (3,))
    decode_worker.submit(op, {0: backend}).result(timeout=5.0)
    assert decode_worker.wait_idle(timeout=5.0)

    (event,) = decode_worker.drain()
    assert isinstance(event, LoadEvent)
    assert event.final
    result = event.result_for(0)
    assert result.ok
    assert result.decoded.global_index == 3


def test_load_pos_posts_partial_events_then_final(decode_worker, backend):
    op = LoadOperation(1, LoadKind.LOAD_POS, (0,), positions=((0, 0), (1, 1), (2, 2)))
    decode_worker.submit(op, {0: backend}).result(timeout=5.0)

    events = decode_worker.drain()
    assert len(events) == 4
    assert [event.final for event in events] == [False, False, False, True]
    assert sorted(event.results[0].global_index for event in events[:-1]) == [0, 1, 2]


def test_decode_failure_is_reported_not_raised(decode_worker, backend):
    missing = len(backend.image_paths) - 1
    op = LoadOperation(1, LoadKind.LOAD_NEXT, (0,), (missing,))
    decode_worker.submit(op, {0: backend}).result(timeout=5.0)

    (event,) = decode_worker.drain()
    result = event.result_for(0)
    assert not result.ok
    assert "missing.png" in result.error


def test_shift_completes_without_decoding(decode_worker, backend):
    op = LoadOperation(1, LoadKind.SHIFT_PREVIOUS, (0,), (None,))
    decode_worker.submit(op, {0: backend}).result(timeout=5.0)
    (event,) = decode_worker.drain()
    assert event.final
    assert event.results == ()


def test_preview_event_is_tagged(decode_worker, backend):
    decode_worker.submit_preview(0, 4, 7, backend, submitted_at=1.5).result(timeout=5.0)
    (event,) = decode_worker.drain()
    assert isinstance(event, PreviewEvent)
    assert (event.pane_index, event.pos, event.generation) == (0, 4, 7)
    assert event.decoded.pixels.shape == (720, 1280, 4)
    assert event.submitted_at == 1.5


def test_drain_limit(decode_worker, backend):
    for op_id in range(3):
        op = LoadOperation(op_id, LoadKind.LOAD_NEXT, (0,), (op_id,))
        decode_worker.submit(op, {0: backend})
    assert decode_worker.wait_idle(timeout=5.0)
    assert len(decode_worker.drain(limit=2)) == 2
    assert len(decode_worker.drain()) == 1


def test_closed_worker_rejects_work(backend):
    worker = DecodeWorker(max_workers=1)
    worker.close()
    with pytest.raises(RuntimeError):
        worker.submit(LoadOperation(1, LoadKind.LOAD_NEXT, (0,), (0,)), {0: backend})
