"""
Upload queue.

Each task moves through an explicit state machine:

    PENDING -> UPLOADING -> COMPLETED
                         -> FAILED -> PENDING (explicit retry only)

Pending tasks are dispatched strictly one at a time in enqueue order. A failed
upload marks only its own task FAILED; the batch moves on to the next task.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from typing import Callable

from bucket_manager.errors import StoreError, ValidationError
from bucket_manager.models import SpentSource, UploadSource, UploadState, UploadTask, UploadTaskSnapshot
from bucket_manager.services.events import EventEmitter
from bucket_manager.services.gateway import ObjectStoreGateway

log = logging.getLogger("bucket_manager.uploads")

_TRANSITIONS: dict[UploadState, frozenset[UploadState]] = {
    UploadState.PENDING: frozenset({UploadState.UPLOADING}),
    UploadState.UPLOADING: frozenset({UploadState.COMPLETED, UploadState.FAILED}),
    UploadState.FAILED: frozenset({UploadState.PENDING}),
    UploadState.COMPLETED: frozenset(),
}


class InvalidTransition(ValueError):
    def __init__(self, task_id: str, current: UploadState, target: UploadState):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Upload {task_id} is {current.value}; cannot move to {target.value}")


def _new_task_id() -> str:
    return uuid.uuid4().hex[:12]


class UploadOrchestrator:
    def __init__(
        self,
        gateway: ObjectStoreGateway,
        events: EventEmitter | None = None,
        id_factory: Callable[[], str] = _new_task_id,
    ):
        self._gateway = gateway
        self.events = events or EventEmitter()
        self._new_id = id_factory
        self._tasks: dict[str, UploadTask] = {}
        self._dispatch_lock = asyncio.Lock()

    # -- queries ---------------------------------------------------------

    def snapshot(self) -> list[UploadTaskSnapshot]:
        return [t.snapshot() for t in self._tasks.values()]

    def get(self, task_id: str) -> UploadTaskSnapshot:
        return self._task(task_id).snapshot()

    def counts(self) -> dict[str, int]:
        out = {s.value: 0 for s in UploadState}
        for t in self._tasks.values():
            out[t.state.value] += 1
        return out

    @property
    def busy(self) -> bool:
        return self._dispatch_lock.locked()

    # -- intents ---------------------------------------------------------

    def enqueue(
        self,
        source: UploadSource,
        target_key: str,
        content_type: str | None = None,
        size: int | None = None,
    ) -> UploadTaskSnapshot:
        if not target_key:
            raise ValidationError("File key is required")
        task = UploadTask(
            id=self._new_id(),
            source=source,
            target_key=target_key,
            content_type=content_type or mimetypes.guess_type(source.name)[0] or "application/octet-stream",
            size=size if size is not None else source.size(),
        )
        self._tasks[task.id] = task
        log.info("upload_enqueued task=%s key=%s size=%s", task.id, task.target_key, task.size)
        snap = task.snapshot()
        self.events.emit("task_added", snap)
        return snap

    def remove(self, task_id: str) -> UploadTaskSnapshot:
        # An UPLOADING task keeps transferring; its outcome is simply not recorded.
        task = self._tasks.pop(task_id, None)
        if task is None:
            raise KeyError(task_id)
        snap = task.snapshot()
        self.events.emit("task_removed", snap)
        return snap

    def clear_finished(self) -> int:
        done = [tid for tid, t in self._tasks.items() if t.state is UploadState.COMPLETED]
        for tid in done:
            self.remove(tid)
        return len(done)

    def requeue(self, task_id: str) -> UploadTaskSnapshot:
        task = self._task(task_id)
        self._transition(task, UploadState.PENDING)
        return task.snapshot()

    def requeue_failed(self) -> list[UploadTaskSnapshot]:
        failed = [t for t in self._tasks.values() if t.state is UploadState.FAILED]
        for task in failed:
            self._transition(task, UploadState.PENDING)
        return [t.snapshot() for t in failed]

    async def retry(self, task_id: str) -> UploadTaskSnapshot:
        self.requeue(task_id)
        await self.dispatch()
        return self.get(task_id)

    async def retry_all(self) -> list[UploadTaskSnapshot]:
        ids = [s.id for s in self.requeue_failed()]
        await self.dispatch()
        return [self._tasks[tid].snapshot() for tid in ids if tid in self._tasks]

    async def dispatch(self) -> list[UploadTaskSnapshot]:
        """
        Upload every PENDING task, one after another, including tasks enqueued while
        the batch runs. Returns the tasks this call processed that are still queued.
        """
        async with self._dispatch_lock:
            processed: list[UploadTask] = []
            while True:
                task = self._next_pending()
                if task is None:
                    break
                await self._upload(task)
                processed.append(task)
            result = [t.snapshot() for t in processed if t.id in self._tasks]
            if processed:
                log.info(
                    "upload_batch_done total=%s completed=%s failed=%s",
                    len(result),
                    sum(1 for s in result if s.state is UploadState.COMPLETED),
                    sum(1 for s in result if s.state is UploadState.FAILED),
                )
                self.events.emit("batch_done", result)
            return result

    # -- internals -------------------------------------------------------

    def _task(self, task_id: str) -> UploadTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(task_id)
        return task

    def _next_pending(self) -> UploadTask | None:
        for task in self._tasks.values():
            if task.state is UploadState.PENDING:
                return task
        return None

    def _transition(self, task: UploadTask, target: UploadState) -> None:
        if target not in _TRANSITIONS[task.state]:
            raise InvalidTransition(task.id, task.state, target)
        task.state = target
        if target is UploadState.PENDING:
            task.progress = 0.0
            task.error = None
        elif target is UploadState.UPLOADING:
            task.attempts += 1
        elif target is UploadState.COMPLETED:
            task.progress = 100.0
            task.error = None
            # completed tasks are never re-sent
            task.source = SpentSource(task.source.name)
        if task.id in self._tasks:
            self.events.emit("task_state", task.snapshot())

    def _on_progress(self, task: UploadTask, percent: float) -> None:
        if task.state is not UploadState.UPLOADING or percent <= task.progress:
            return
        task.progress = min(100.0, percent)
        if task.id in self._tasks:
            self.events.emit("task_progress", task.snapshot())

    async def _upload(self, task: UploadTask) -> None:
        self._transition(task, UploadState.UPLOADING)
        try:
            with task.source.open() as fh:
                await self._gateway.put(
                    task.target_key,
                    fh,
                    task.content_type,
                    on_progress=lambda p: self._on_progress(task, p),
                    size=task.size,
                )
        except asyncio.CancelledError:
            task.error = "Upload cancelled"
            self._transition(task, UploadState.FAILED)
            log.warning("upload_cancelled task=%s key=%s", task.id, task.target_key)
            raise
        except (StoreError, OSError) as e:
            task.error = e.message if isinstance(e, StoreError) else f"Failed to read {task.source.name}: {e}"
            self._transition(task, UploadState.FAILED)
            log.warning("upload_failed task=%s key=%s error=%s", task.id, task.target_key, task.error)
            return
        self._transition(task, UploadState.COMPLETED)
