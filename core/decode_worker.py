"""Background decoding for load operations and scrub previews."""
from __future__ import annotations

import asyncio
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Mapping, Union

from core.backends import DecodedImage, ImageBackend
from core.errors import DecodeError
from core.load_ops import DecodeJob, LoadEvent, LoadKind, LoadOperation, LoadResult, PreviewEvent

LOG = logging.getLogger(__name__)

WorkerEvent = Union[LoadEvent, PreviewEvent]


def jobs_for(op: LoadOperation) -> list[DecodeJob]:
    if op.kind is LoadKind.LOAD_POS:
        pane_index = op.pane_indices[0]
        return [DecodeJob(pane_index, index, slot) for index, slot in op.positions]
    if not op.kind.loads_images:
        return []
    return [
        DecodeJob(pane_index, target)
        for pane_index, target in zip(op.pane_indices, op.targets)
        if target is not None
    ]


class DecodeWorker:
    """Resolves decode requests on a thread pool driven by an asyncio loop.

    Results are never delivered through callbacks: every completion becomes
    a tagged event on a thread-safe queue that the update loop empties with
    :meth:`drain`.
    """

    def __init__(self, *, max_workers: int = 4) -> None:
        self._events: queue.SimpleQueue[WorkerEvent] = queue.SimpleQueue()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)), thread_name_prefix="decode"
        )
        self._loop = asyncio.new_event_loop()
        self._loop_ready = threading.Event()
        self._idle = threading.Condition()
        self._outstanding = 0
        self._latest_preview: dict[int, int] = {}
        self._stopped = False
        self._thread = threading.Thread(target=self._run_loop, name="decode-loop", daemon=True)
        self._thread.start()
        self._loop_ready.wait()

    # ------------------------------------------------------------------
    def submit(self, op: LoadOperation, backends: Mapping[int, ImageBackend]) -> Future:
        """Start decoding every image ``op`` asks for."""
        if self._stopped:
            raise RuntimeError("DecodeWorker has been closed")
        jobs = [job for job in jobs_for(op) if job.pane_index in backends]
        pinned = {job.pane_index: backends[job.pane_index] for job in jobs}
        self._track(1)
        return asyncio.run_coroutine_threadsafe(self._run_operation(op, jobs, pinned), self._loop)

    def submit_preview(
        self, pane_index: int, pos: int, generation: int, backend: ImageBackend, *, submitted_at: float = 0.0
    ) -> Future:
        """Decode a low-resolution preview; superseded requests are skipped."""
        if self._stopped:
            raise RuntimeError("DecodeWorker has been closed")
        self._latest_preview[pane_index] = max(self._latest_preview.get(pane_index, 0), generation)
        self._track(1)
        return asyncio.run_coroutine_threadsafe(
            self._run_preview(pane_index, pos, generation, backend, submitted_at), self._loop
        )

    def drain(self, limit: int | None = None) -> list[WorkerEvent]:
        events: list[WorkerEvent] = []
        while limit is None or len(events) < limit:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                break
        return events

    def wait_idle(self, timeout: float = 5.0) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def close(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        fut = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            fut.result(timeout=1.0)
        except Exception as exc:  # pragma: no cover - shutdown race
            LOG.debug("Decode loop shutdown did not complete cleanly: %s", exc)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=1.0)
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    async def _run_operation(
        self, op: LoadOperation, jobs: list[DecodeJob], backends: Mapping[int, ImageBackend]
    ) -> None:
        try:
            if op.kind is LoadKind.LOAD_POS:
                async def _one(job: DecodeJob) -> None:
                    result = await self._decode(job, backends[job.pane_index].decode)
                    self._events.put(LoadEvent(op, (result,), final=False))

                await asyncio.gather(*(_one(job) for job in jobs))
                self._events.put(LoadEvent(op, (), final=True))
            else:
                results = await asyncio.gather(
                    *(self._decode(job, backends[job.pane_index].decode) for job in jobs)
                )
                self._events.put(LoadEvent(op, tuple(results), final=True))
        finally:
            self._track(-1)

    async def _run_preview(
        self,
        pane_index: int,
        pos: int,
        generation: int,
        backend: ImageBackend,
        submitted_at: float,
    ) -> None:
        try:
            if generation < self._latest_preview.get(pane_index, 0):
                return
            result = await self._decode(DecodeJob(pane_index, pos), backend.decode_preview)
            self._events.put(
                PreviewEvent(
                    pane_index,
                    pos,
                    generation,
                    decoded=result.decoded,
                    error=result.error,
                    submitted_at=submitted_at,
                )
            )
        finally:
            self._track(-1)

    async def _decode(
        self, job: DecodeJob, decode: Callable[[int], DecodedImage]
    ) -> LoadResult:
        loop = asyncio.get_running_loop()
        try:
            decoded = await loop.run_in_executor(self._executor, decode, job.global_index)
        except DecodeError as exc:
            return LoadResult(job.pane_index, job.global_index, job.slot, error=str(exc))
        except Exception as exc:
            LOG.exception("Unexpected failure decoding image %d", job.global_index)
            return LoadResult(job.pane_index, job.global_index, job.slot, error=repr(exc))
        return LoadResult(job.pane_index, job.global_index, job.slot, decoded=decoded)

    def _track(self, delta: int) -> None:
        with self._idle:
            self._outstanding += delta
            if self._outstanding == 0:
                self._idle.notify_all()

    async def _shutdown(self) -> None:
        tasks = [
            task for task in asyncio.all_tasks(self._loop) if task is not asyncio.current_task()
        ]
        for task in tasks:
            task.cancel()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._loop_ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()
