"""Background writer for audit and security log entries."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

from sqlalchemy.orm import Session

from .. import config
from ..audit import AuditEvent, SecurityEvent, write_event
from ..database import SessionLocal
from ..metrics import AUDIT_DROPPED, AUDIT_WRITE_FAILURES

# purpose: persist audit/security entries outside the request path with bounded memory
# inputs: AuditEvent and SecurityEvent instances submitted by access dependencies and routes
# outputs: append-only log rows; dropped and failed entries are counted, never retried
# status: active

logger = logging.getLogger(__name__)

_STOP = object()


class AuditDispatcher:
    """Bounded queue drained by one daemon thread.

    ``submit`` never blocks: when the queue is full the entry is dropped.
    Write failures are logged and counted and do not reach the caller.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        maxsize: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._queue: queue.Queue = queue.Queue(
            maxsize=config.AUDIT_QUEUE_MAXSIZE if maxsize is None else maxsize
        )
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name="audit-writer", daemon=True)
            self._thread.start()

    def submit(self, event: AuditEvent | SecurityEvent) -> bool:
        self.start()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            AUDIT_DROPPED.inc()
            logger.warning(
                "Audit queue full, dropping entry",
                extra={"entry_kind": type(event).__name__, "queue_size": self._queue.maxsize},
            )
            return False
        return True

    def flush(self) -> None:
        """Block until every queued entry has been handled."""

        if self._thread is None:
            return
        self._queue.join()

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None or not thread.is_alive():
            return
        self._queue.put(_STOP)
        thread.join(timeout=5)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._write(item)
            finally:
                self._queue.task_done()

    def _write(self, event: AuditEvent | SecurityEvent) -> None:
        try:
            db = self._session_factory()
        except Exception:
            AUDIT_WRITE_FAILURES.inc()
            logger.exception("Audit writer could not open a session", extra={"entry_kind": type(event).__name__})
            return
        try:
            write_event(db, event)
        except Exception:
            db.rollback()
            AUDIT_WRITE_FAILURES.inc()
            logger.exception("Failed to write audit entry", extra={"entry_kind": type(event).__name__})
        finally:
            db.close()


_dispatcher: AuditDispatcher | None = None


def get_audit_dispatcher() -> AuditDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = AuditDispatcher()
    return _dispatcher


def shutdown_audit_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        _dispatcher.stop()
        _dispatcher = None
