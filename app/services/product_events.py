"""Domain events for product writes.

Any session that has a :class:`ProductEventBus` attached reports created,
updated and deleted products once its transaction commits. Subscribers
never see events from rolled back transactions, and their failures never
reach the code that committed.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.orm import Session

from models import Product

BUS_KEY = "product_event_bus"
PENDING_KEY = "pending_product_events"

SYNC_MODE_INLINE = "inline"
SYNC_MODE_BACKGROUND = "background"


@dataclass(frozen=True)
class ProductEvent:
    product_id: int
    title: str | None = None


class ProductCreated(ProductEvent):
    pass


class ProductUpdated(ProductEvent):
    pass


class ProductDeleted(ProductEvent):
    pass


class ProductEventBus:
    def __init__(self, app, mode=SYNC_MODE_BACKGROUND):
        if mode not in (SYNC_MODE_INLINE, SYNC_MODE_BACKGROUND):
            raise ValueError(f"Unknown sync mode: {mode}")
        self.app = app
        self.mode = mode
        self._subscribers = []
        self._queue = queue.Queue()
        self._worker = None
        self._lock = threading.Lock()

    def subscribe(self, handler):
        self._subscribers.append(handler)
        return handler

    def attach(self, session):
        session.info[BUS_KEY] = self
        return session

    def publish(self, product_event: ProductEvent):
        if self.mode == SYNC_MODE_INLINE:
            self._dispatch(product_event)
            return
        self._ensure_worker()
        self._queue.put(product_event)

    def join(self):
        """Block until every queued event has been handled."""
        self._queue.join()

    def _dispatch(self, product_event):
        for handler in list(self._subscribers):
            try:
                handler(product_event)
            except Exception:
                self.app.logger.exception("Product event handler failed for %r", product_event)

    def _ensure_worker(self):
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                name="product-event-worker",
                daemon=True,
            )
            self._worker.start()

    def _run(self):
        while True:
            product_event = self._queue.get()
            try:
                with self.app.app_context():
                    self._dispatch(product_event)
            finally:
                self._queue.task_done()


def _collect_product_changes(session, flush_context):
    if BUS_KEY not in session.info:
        return
    pending = session.info.setdefault(PENDING_KEY, [])
    for obj in session.new:
        if isinstance(obj, Product):
            pending.append(ProductCreated(obj.id, obj.title))
    for obj in session.dirty:
        if isinstance(obj, Product) and session.is_modified(obj):
            pending.append(ProductUpdated(obj.id, obj.title))
    for obj in session.deleted:
        if isinstance(obj, Product):
            pending.append(ProductDeleted(obj.id, obj.title))


def _publish_product_changes(session):
    pending = session.info.pop(PENDING_KEY, [])
    bus = session.info.get(BUS_KEY)
    if bus is None:
        return
    published = set()
    for product_event in pending:
        if product_event in published:
            continue
        published.add(product_event)
        bus.publish(product_event)


def _discard_product_changes(session, previous_transaction=None):
    session.info.pop(PENDING_KEY, None)


_HOOKS = (
    ("after_flush", _collect_product_changes),
    ("after_commit", _publish_product_changes),
    ("after_rollback", _discard_product_changes),
)


def install_session_hooks():
    for name, listener in _HOOKS:
        if not event.contains(Session, name, listener):
            event.listen(Session, name, listener)
