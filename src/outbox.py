"""
Outbound task queue for notifications to third parties.

Order mutations only *enqueue* work (an e-mail, a receipt, a share link);
the work itself runs later, either on a background worker thread started
with :meth:`OutboundQueue.start` or synchronously via
:meth:`OutboundQueue.run_pending`.  Each task reports its outcome to an
optional success or failure callback.  A failed task is retried only when
it was enqueued with ``max_attempts > 1``.
"""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from external_services import ChatShareService, EmailService, ReceiptService
from metrics import OUTBOUND_QUEUE_DEPTH, OUTBOUND_TASKS_TOTAL
from models import Order, User

logger = logging.getLogger(__name__)

# Completed tasks kept for inspection
FINISHED_HISTORY = 200


@dataclass
class OutboundTask:
    kind: str
    action: Callable[[], Any]
    on_success: Optional[Callable[[Any], None]] = None
    on_failure: Optional[Callable[[Exception], None]] = None
    max_attempts: int = 1
    attempts: int = 0
    status: str = "queued"  # queued | succeeded | failed
    error: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class OutboundQueue:
    def __init__(self, backoff_base: float = 0.25, backoff_max: float = 2.0,
                 backoff_jitter: float = 0.1) -> None:
        self._queue: "queue.Queue[Optional[OutboundTask]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.backoff_jitter = backoff_jitter
        self.finished: Deque[OutboundTask] = deque(maxlen=FINISHED_HISTORY)

    def enqueue(
        self,
        kind: str,
        action: Callable[[], Any],
        on_success: Optional[Callable[[Any], None]] = None,
        on_failure: Optional[Callable[[Exception], None]] = None,
        max_attempts: int = 1,
    ) -> OutboundTask:
        task = OutboundTask(
            kind=kind,
            action=action,
            on_success=on_success,
            on_failure=on_failure,
            max_attempts=max(1, int(max_attempts)),
        )
        self._queue.put(task)
        OUTBOUND_QUEUE_DEPTH.inc()
        logger.debug("Outbound task queued", extra={"request_id": task.id, "extra": {"kind": kind}})
        return task

    def pending(self) -> int:
        return self._queue.qsize()

    # ----- execution -----

    def _backoff_sleep(self, attempt_index: int) -> None:
        # 0.25, 0.5, 1.0, ... capped, with +/- jitter
        delay = min(self.backoff_base * (2 ** attempt_index), self.backoff_max)
        jitter = (random.random() * 2 - 1) * self.backoff_jitter
        time.sleep(max(0.0, delay + jitter))

    def _execute(self, task: OutboundTask) -> None:
        OUTBOUND_QUEUE_DEPTH.dec()
        last_error: Optional[Exception] = None
        while task.attempts < task.max_attempts:
            task.attempts += 1
            try:
                result = task.action()
            except Exception as e:
                last_error = e
                logger.warning(
                    "Outbound task attempt failed",
                    extra={"request_id": task.id,
                           "extra": {"kind": task.kind, "attempt": task.attempts, "error": str(e)}},
                )
                if task.attempts < task.max_attempts:
                    self._backoff_sleep(task.attempts - 1)
                continue
            task.status = "succeeded"
            OUTBOUND_TASKS_TOTAL.inc(kind=task.kind, status="succeeded")
            self._callback(task, task.on_success, result)
            self.finished.append(task)
            return
        task.status = "failed"
        task.error = str(last_error)
        OUTBOUND_TASKS_TOTAL.inc(kind=task.kind, status="failed")
        logger.error(
            "Outbound task failed",
            extra={"request_id": task.id, "extra": {"kind": task.kind, "error": task.error}},
        )
        self._callback(task, task.on_failure, last_error)
        self.finished.append(task)

    @staticmethod
    def _callback(task: OutboundTask, callback: Optional[Callable[[Any], None]], arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception:
            logger.exception("Outbound task callback raised", extra={"request_id": task.id})

    def run_pending(self) -> int:
        """Run every queued task in the calling thread; return how many ran."""
        ran = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return ran
            if task is None:
                continue
            self._execute(task)
            ran += 1

    # ----- background worker -----

    def _worker(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                return
            self._execute(task)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._worker, name="outbound-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Let the worker finish the tasks queued so far, then end it."""
        if not self._thread:
            return
        self._queue.put(None)
        self._thread.join(timeout)
        self._thread = None


class OrderNotifier:
    """Queue the third-party side effects of order events."""

    def __init__(
        self,
        outbox: OutboundQueue,
        email: EmailService,
        receipts: ReceiptService,
        chat: ChatShareService,
    ) -> None:
        self.outbox = outbox
        self.email = email
        self.receipts = receipts
        self.chat = chat

    def order_placed(self, order: Order, user: Optional[User]) -> List[OutboundTask]:
        to = user.email if user else None
        return [
            self.outbox.enqueue("order_email", lambda: self.email.send_order_email(order, to)),
            self.outbox.enqueue("chat_share_link", lambda: self.chat.share_link(order, user)),
        ]

    def order_delivered(
        self,
        order: Order,
        user: Optional[User],
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> List[OutboundTask]:
        to = user.email if user else None
        return [
            self.outbox.enqueue("receipt", lambda: self.receipts.generate_receipt(order)),
            self.outbox.enqueue(
                "delivery_email",
                lambda: self.email.send_delivery_email(order, to),
                on_success=on_success,
            ),
        ]
