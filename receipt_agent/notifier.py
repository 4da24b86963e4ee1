# Completion Notifier - confirms printed orders upstream from a background thread
# Never raises into the print path; confirmation failures are logged only

import logging
import queue
import threading
from collections import deque
from typing import Any, Dict, Optional

from .upstream_client import UpstreamClient


logger = logging.getLogger(__name__)

_STOP = object()


class CompletionNotifier:
    """Detached, bounded-retry delivery of print outcomes to the upstream backend"""

    def __init__(self, client: UpstreamClient, max_retries: int = 3,
                 retry_delay: float = 2, history_size: int = 50):
        self.client = client
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.queue = queue.Queue()
        self.thread = None
        self.running = False
        self._stop_event = threading.Event()
        self._idle = threading.Condition()
        self._pending = 0
        self.history = deque(maxlen=history_size)

    def start(self):
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._worker, name='completion-notifier', daemon=True)
        self.thread.start()
        logger.info("Completion notifier started")

    def submit(self, order_id, result: Dict[str, Any]) -> bool:
        """Queue a confirmation; returns immediately"""
        if order_id in (None, ''):
            return False
        if not result.get('success'):
            logger.debug(f"Order {order_id} did not print; nothing to confirm")
            return False
        with self._idle:
            self._pending += 1
        self.queue.put((order_id, dict(result)))
        return True

    def drain(self, timeout: float = None) -> bool:
        """Block until every submitted confirmation has been attempted"""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def stop(self, timeout: float = 5):
        self.running = False
        self._stop_event.set()
        self.queue.put(_STOP)
        if self.thread:
            self.thread.join(timeout=timeout)
        logger.info("Completion notifier stopped")

    def _worker(self):
        while True:
            item = self.queue.get()
            if item is _STOP:
                break
            order_id, result = item
            try:
                outcome = self._deliver(order_id, result)
            except Exception as e:
                logger.error(f"Unexpected error confirming order {order_id}: {e}")
                outcome = {'success': False, 'error': str(e)}
            self.history.append({'order_id': order_id, **outcome})
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()

    def _deliver(self, order_id, result: Dict[str, Any]) -> Dict[str, Any]:
        outcome: Optional[Dict[str, Any]] = None
        for attempt in range(self.max_retries):
            outcome = self.client.report_completion(order_id, result)
            if outcome.get('success') or not outcome.get('retry'):
                break
            logger.warning(
                f"Confirming order {order_id} failed ({outcome.get('error')}), "
                f"retry {attempt + 1}/{self.max_retries}"
            )
            if attempt + 1 < self.max_retries and self._stop_event.wait(self.retry_delay * (attempt + 1)):
                break
        if not outcome.get('success'):
            logger.warning(f"Giving up confirming order {order_id}: {outcome.get('error')}")
        return outcome

    def get_status(self) -> Dict[str, Any]:
        with self._idle:
            pending = self._pending
        return {
            'running': self.running,
            'pending': pending,
            'recent': list(self.history)[-5:],
        }
