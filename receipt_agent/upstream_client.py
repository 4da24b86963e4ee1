# Upstream Client - REST client for the remote print queue and the order backend
# Polls jobs from the queue host and confirms printed orders upstream

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .errors import JobNotFoundError, QueueError
from .job_store import PrintJob


logger = logging.getLogger(__name__)

USER_AGENT = 'Receipt-Print-Agent/1.0'


class UpstreamClient:
    """HTTP client for the print queue (agent side) and print-status confirmation"""

    def __init__(self, queue_url: str = None, upstream_url: str = None,
                 api_key: str = None, timeout: float = 3, printed_by: str = 'local-print-agent'):
        self.queue_url = (queue_url or '').rstrip('/')
        self.upstream_url = (upstream_url or '').rstrip('/')
        self.timeout = timeout
        self.printed_by = printed_by
        self.session = requests.Session()

        if api_key:
            self.session.headers.update({'Authorization': f'Bearer {api_key}'})

        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        })

    def fetch_job(self, job_id) -> Optional[PrintJob]:
        """GET one job. None when the queue host is unreachable; 404 raises."""
        if not self.queue_url:
            raise QueueError("No queue_url configured")
        endpoint = f"{self.queue_url}/print-queue/jobs/{job_id}"
        try:
            response = self.session.get(endpoint, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"Timeout fetching job {job_id}")
            return None
        except requests.exceptions.ConnectionError:
            logger.warning(f"Queue host unreachable fetching job {job_id}")
            return None

        if response.status_code == 404:
            raise JobNotFoundError(job_id)
        if response.status_code != 200:
            raise QueueError(f"Queue returned {response.status_code} for job {job_id}",
                             {'body': response.text[:200]})
        try:
            return PrintJob.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise QueueError(f"Malformed job {job_id}: {e}")

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Currently queued jobs on the queue host; empty when it is unreachable"""
        if not self.queue_url:
            raise QueueError("No queue_url configured")
        try:
            response = self.session.get(f"{self.queue_url}/print-queue/jobs", timeout=self.timeout)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.warning(f"Could not list queued jobs: {e}")
            return []
        if response.status_code != 200:
            raise QueueError(f"Queue listing returned {response.status_code}")
        try:
            return response.json().get('jobs', [])
        except ValueError as e:
            raise QueueError(f"Malformed queue listing: {e}")

    def report_completion(self, order_id, result: Dict[str, Any]) -> Dict[str, Any]:
        """One confirmation attempt; the caller owns the retry policy"""
        if not self.upstream_url:
            return {'success': False, 'error': 'No upstream_url configured', 'retry': False}

        endpoint = f"{self.upstream_url}/orders/{order_id}/print-status"
        body = {
            'impresso': bool(result.get('success')),
            'printedAt': datetime.now(timezone.utc).isoformat(),
            'printedBy': self.printed_by,
            'method': result.get('method'),
        }
        try:
            response = self.session.post(endpoint, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return {'success': False, 'error': 'Timeout', 'retry': True}
        except requests.exceptions.ConnectionError as e:
            return {'success': False, 'error': f'Connection error: {e}', 'retry': True}

        if 200 <= response.status_code < 300:
            logger.info(f"Order {order_id} print status confirmed upstream")
            return {'success': True, 'status_code': response.status_code}
        if response.status_code in (400, 401, 403, 404):
            logger.error(f"Upstream rejected print status for {order_id}: {response.status_code}")
            return {
                'success': False,
                'error': response.text[:200],
                'status_code': response.status_code,
                'retry': False,
            }
        return {
            'success': False,
            'error': f'Server error {response.status_code}',
            'status_code': response.status_code,
            'retry': True,
        }

    def close(self):
        self.session.close()
