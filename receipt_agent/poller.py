# Queue Poller - agent side of the remote print queue
# Pulls jobs from the queue host and prints them on this machine

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from .errors import JobNotFoundError, QueueError
from .job_store import PrintJob
from .upstream_client import UpstreamClient


logger = logging.getLogger(__name__)


class QueuePoller:
    """Fetches remote jobs and hands each one to the shared job handler exactly once"""

    MAX_SEEN = 1000

    def __init__(self, client: UpstreamClient,
                 handle_job: Callable[[PrintJob], Dict[str, Any]],
                 interval: float = 2):
        self.client = client
        self.handle_job = handle_job
        self.interval = interval
        self.running = False
        self._stop_event = threading.Event()
        self._seen = OrderedDict()

    def _mark_seen(self, job_id: int):
        self._seen[job_id] = True
        while len(self._seen) > self.MAX_SEEN:
            self._seen.popitem(last=False)

    def poll(self, job_id) -> Optional[Dict[str, Any]]:
        """
        Fetch one known job and print it.

        Returns the print result, or None when the queue host did not answer.
        A job that is gone (already fetched and expired) raises JobNotFoundError.
        """
        job = self.client.fetch_job(job_id)
        if job is None:
            return None
        self._mark_seen(job.id)
        logger.info(f"Printing queued job {job.id} ({job.kind})")
        return self.handle_job(job)

    def poll_once(self) -> List[Dict[str, Any]]:
        """One sweep over the remote listing; each unseen job is printed once"""
        results = []
        for entry in self.client.list_jobs():
            job_id = entry.get('id')
            if job_id is None or job_id in self._seen or entry.get('fetched'):
                continue
            try:
                result = self.poll(job_id)
            except JobNotFoundError:
                logger.debug(f"Job {job_id} vanished before it could be fetched")
                self._mark_seen(job_id)
                continue
            if result is not None:
                results.append({'jobId': job_id, **result})
        return results

    def run(self):
        """Poll until stop() is called"""
        self.running = True
        self._stop_event.clear()
        logger.info(f"Polling {self.client.queue_url} every {self.interval}s")
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except QueueError as e:
                logger.warning(f"Queue poll failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error while polling: {e}")
            self._stop_event.wait(self.interval)
        self.running = False
        logger.info("Queue polling stopped")

    def stop(self):
        self._stop_event.set()
