from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Mapping

import pytest
from PIL import Image

from core.backends import ImageBackend
from core.decode_worker import jobs_for
from core.load_ops import LoadEvent, LoadKind, LoadOperation, LoadResult, PreviewEvent
from core.navigation import NavigationSettings, Navigator


def write_images(directory: Path, count: int, *, size=(4, 3), prefix: str = "img_") -> list[Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for idx in range(count):
        path = directory / f"{prefix}{idx + 1}.png"
        Image.new("RGB", size, ((idx * 10) % 256, 40, 200)).save(path)
        paths.append(path)
    return paths


class ManualWorker:
    """Deterministic stand-in for the threaded decode worker.

    Operations are recorded on submit and only resolved when a test calls
    :meth:`finish`; decoding itself still goes through the real backend.
    """

    def __init__(self) -> None:
        self.submitted: list[LoadOperation] = []
        self.previews: list[tuple[int, int, int]] = []
        self.closed = False
        self._backends: dict[int, Mapping[int, ImageBackend]] = {}
        self._preview_backends: dict[tuple[int, int], ImageBackend] = {}
        self._open: list[LoadOperation] = []
        self._events: list = []

    # DecodeWorker interface -------------------------------------------
    def submit(self, op: LoadOperation, backends: Mapping[int, ImageBackend]):
        self.submitted.append(op)
        self._open.append(op)
        self._backends[op.op_id] = dict(backends)

    def submit_preview(self, pane_index, pos, generation, backend, *, submitted_at=0.0):
        self.previews.append((pane_index, pos, generation))
        self._preview_backends[(pane_index, generation)] = backend

    def drain(self, limit=None):
        events, self._events = self._events, []
        return events

    def close(self) -> None:
        self.closed = True

    # Test controls ----------------------------------------------------
    @property
    def open_ops(self) -> list[LoadOperation]:
        return list(self._open)

    def kinds(self) -> list[LoadKind]:
        return [op.kind for op in self.submitted]

    def finish(self, op: LoadOperation, *, failing: Iterable[int] = (), reverse: bool = False) -> None:
        failing = set(failing)
        backends = self._backends[op.op_id]
        results = []
        for job in jobs_for(op):
            if job.global_index in failing:
                results.append(LoadResult(job.pane_index, job.global_index, job.slot, error="decode failed"))
            else:
                decoded = backends[job.pane_index].decode(job.global_index)
                results.append(LoadResult(job.pane_index, job.global_index, job.slot, decoded=decoded))
        if op.kind is LoadKind.LOAD_POS:
            for result in reversed(results) if reverse else results:
                self._events.append(LoadEvent(op, (result,), final=False))
            self._events.append(LoadEvent(op, (), final=True))
        else:
            self._events.append(LoadEvent(op, tuple(results), final=True))
        self._open.remove(op)

    def finish_all(self, *, failing: Iterable[int] = ()) -> None:
        for op in list(self._open):
            self.finish(op, failing=failing)

    def finish_preview(self, pane_index: int, pos: int, generation: int) -> None:
        backend = self._preview_backends[(pane_index, generation)]
        decoded = backend.decode_preview(pos)
        self._events.append(PreviewEvent(pane_index, pos, generation, decoded=decoded))

    def settle(self, nav: Navigator, rounds: int = 20) -> None:
        """Tick and resolve everything until the navigator stops submitting work."""
        for _ in range(rounds):
            nav.tick()
            if not self._open:
                break
            self.finish_all()
        nav.tick()


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "frames"
    write_images(directory, 10)
    return directory


@pytest.fixture
def long_image_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "long"
    write_images(directory, 20)
    return directory


@pytest.fixture
def make_images(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, count: int, **kwargs) -> Path:
        directory = tmp_path / name
        write_images(directory, count, **kwargs)
        return directory

    return _make


@pytest.fixture
def worker() -> ManualWorker:
    return ManualWorker()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_navigator(worker: ManualWorker, clock: FakeClock) -> Callable[..., Navigator]:
    def _make(*, pane_count: int = 1, **overrides) -> Navigator:
        options = dict(
            cache_count=2,
            scrub_throttle_s=0.0,
            loading_indicator_delay_s=0.3,
            strict_contracts=True,
        )
        options.update(overrides)
        return Navigator(
            NavigationSettings(**options), pane_count=pane_count, worker=worker, clock=clock
        )

    return _make
