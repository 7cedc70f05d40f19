"""Controller manager — turns record changes into serialized reconciles.

Each registered controller owns one primary record kind and may watch
others. Record store events are mapped to work items ``(controller, key)``
and handed to a bounded thread pool. The same item is never processed by
two workers at once: an item enqueued while it is running waits in the
queue and runs again after the current pass finishes.

Scheduling by outcome:

=========================  ===============================================
``Result(requeue_after)``  run again after the delay (periodic resync)
``NotFoundError``          record is gone; nothing to do
``ConflictError``          stale write; run again immediately
``TransientDependency``    wait for a watch event or the resync period
``TransientStorageError``  bounded exponential backoff, then resync period
``ReconcileCancelled``     shutting down; dropped
anything else              logged with traceback, same backoff as storage
=========================  ===============================================
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from appshelf.config import Settings
from appshelf.core.errors import (
    ConflictError,
    NotFoundError,
    ReconcileCancelled,
    TransientDependencyError,
    TransientStorageError,
)
from appshelf.core.record_store import RecordStore, WatchEvent
from appshelf.models.meta import ObjectKey, Record

logger = logging.getLogger(__name__)


class Result(BaseModel):
    """Outcome of one successful reconcile."""

    model_config = ConfigDict(frozen=True)

    requeue: bool = False
    requeue_after: float | None = None


KeyMapper = Callable[[Record], Iterable[ObjectKey]]


class Controller(Protocol):
    name: str
    record_type: type[Record]

    def reconcile(self, key: ObjectKey, cancel: threading.Event) -> Result: ...

    def watches(self) -> list[tuple[str, KeyMapper]]: ...


WorkItem = tuple[str, ObjectKey]


class ControllerManager:
    """Runs registered controllers against a record store.

    Parameters
    ----------
    records:
        The record store whose watch stream drives the controllers.
    settings:
        Supplies ``max_workers``, ``resync_seconds`` and the retry policy.
    """

    def __init__(self, records: RecordStore, settings: Settings) -> None:
        self._records = records
        self._settings = settings
        self._controllers: dict[str, Controller] = {}
        self._cond = threading.Condition()
        self._pending: dict[WorkItem, float] = {}
        self._active: set[WorkItem] = set()
        self._attempts: dict[WorkItem, int] = {}
        self._cancel = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, settings.max_workers), thread_name_prefix="reconcile"
        )
        self._dispatcher: threading.Thread | None = None
        records.watch(self._on_event)

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    # ------------------------------------------------------------------
    # Registration and event mapping
    # ------------------------------------------------------------------

    def register(self, controller: Controller) -> None:
        if controller.name in self._controllers:
            raise ValueError(f"controller {controller.name!r} already registered")
        self._controllers[controller.name] = controller
        logger.debug("registered controller %s for %s", controller.name, controller.record_type.kind)

    def _on_event(self, event: WatchEvent) -> None:
        record = event.record
        for controller in self._controllers.values():
            if record.kind == controller.record_type.kind:
                self.enqueue(controller.name, record.key)
            for kind, mapper in controller.watches():
                if kind != record.kind:
                    continue
                for key in mapper(record):
                    self.enqueue(controller.name, key)

    def enqueue(self, controller_name: str, key: ObjectKey, delay: float = 0.0) -> None:
        """Schedule a reconcile; an earlier due time wins over a later one."""
        with self._cond:
            self._schedule_locked((controller_name, key), delay)
            self._cond.notify_all()

    def resync_all(self) -> None:
        """Enqueue every existing record of every controller's primary kind."""
        for controller in list(self._controllers.values()):
            for record in self._records.list(controller.record_type):
                self.enqueue(controller.name, record.key)

    def _schedule_locked(self, item: WorkItem, delay: float) -> None:
        due = time.monotonic() + max(0.0, delay)
        current = self._pending.get(item)
        if current is None or due < current:
            self._pending[item] = due

    def _take_ready_locked(self) -> list[WorkItem]:
        now = time.monotonic()
        ready = [
            item
            for item, due in sorted(self._pending.items(), key=lambda kv: kv[1])
            if due <= now and item not in self._active
        ]
        for item in ready:
            del self._pending[item]
            self._active.add(item)
        return ready

    def pending(self) -> dict[WorkItem, float]:
        """Snapshot of queued items and their due times (monotonic clock)."""
        with self._cond:
            return dict(self._pending)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _backoff(self, item: WorkItem) -> float:
        attempt = self._attempts.get(item, 0) + 1
        if attempt > self._settings.storage_retry_attempts:
            self._attempts.pop(item, None)
            return self._settings.resync_seconds
        self._attempts[item] = attempt
        return self._settings.retry_backoff_seconds * (2 ** (attempt - 1))

    def _process(self, item: WorkItem) -> None:
        name, key = item
        controller = self._controllers[name]
        delay: float | None = None

        try:
            result = controller.reconcile(key, self._cancel)
        except NotFoundError:
            logger.debug("%s %s: record gone", name, key)
            self._attempts.pop(item, None)
        except ConflictError as exc:
            logger.debug("%s %s: conflict, retrying: %s", name, key, exc)
            delay = 0.0
        except TransientDependencyError as exc:
            logger.info("%s %s: waiting for dependency: %s", name, key, exc)
            self._attempts.pop(item, None)
            delay = self._settings.resync_seconds
        except TransientStorageError as exc:
            delay = self._backoff(item)
            logger.warning("%s %s: storage unavailable, retry in %.1fs: %s", name, key, delay, exc)
        except ReconcileCancelled:
            logger.info("%s %s: cancelled", name, key)
        except Exception:
            delay = self._backoff(item)
            logger.exception("%s %s: reconcile failed, retry in %.1fs", name, key, delay)
        else:
            self._attempts.pop(item, None)
            if result.requeue_after is not None:
                delay = result.requeue_after
            elif result.requeue:
                delay = 0.0
        finally:
            with self._cond:
                self._active.discard(item)
                if delay is not None and not self._cancel.is_set():
                    self._schedule_locked(item, delay)
                self._cond.notify_all()

    def run_until_idle(self, max_rounds: int = 1000) -> int:
        """Process every immediately-due item until none remain.

        Delayed items (resyncs, backoffs) are left queued. Returns the number
        of reconciles performed.
        """
        processed = 0
        for _ in range(max_rounds):
            with self._cond:
                ready = self._take_ready_locked()
            if not ready:
                return processed
            futures: list[Future] = [self._executor.submit(self._process, item) for item in ready]
            wait(futures)
            for future in futures:
                future.result()
            processed += len(ready)
        logger.warning("run_until_idle stopped after %d rounds with work remaining", max_rounds)
        return processed

    # ------------------------------------------------------------------
    # Continuous mode
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Resync everything and dispatch continuously in the background."""
        if self._dispatcher is not None:
            return
        self._cancel.clear()
        self.resync_all()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="appshelf-dispatcher", daemon=True
        )
        self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while not self._cancel.is_set():
            with self._cond:
                ready = self._take_ready_locked()
                if not ready:
                    dues = [due for item, due in self._pending.items() if item not in self._active]
                    timeout = min(dues) - time.monotonic() if dues else 1.0
                    self._cond.wait(timeout=min(max(timeout, 0.01), 1.0))
                    continue
            for item in ready:
                self._executor.submit(self._process, item)

    def stop(self) -> None:
        """Signal cancellation and wait for in-flight reconciles."""
        self._cancel.set()
        with self._cond:
            self._cond.notify_all()
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        self._executor.shutdown(wait=True)
