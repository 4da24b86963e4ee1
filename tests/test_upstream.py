# Tests for the upstream client, completion notifier and queue poller

from unittest import mock

import pytest
import requests
from receipt_agent.errors import JobNotFoundError, QueueError
from receipt_agent.job_store import PrintJob
from receipt_agent.notifier import CompletionNotifier
from receipt_agent.poller import QueuePoller
from receipt_agent.upstream_client import UpstreamClient


def response(status, body=None, text=''):
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = text
    return resp


class TestUpstreamClient:
    """REST calls against the queue host and the order backend"""

    def setup_method(self):
        self.client = UpstreamClient(queue_url='http://queue.local/', upstream_url='http://api.local',
                                     api_key='secret', timeout=3)

    def test_auth_header(self):
        assert self.client.session.headers['Authorization'] == 'Bearer secret'

    def test_fetch_job(self):
        job = {'id': 17, 'type': 'order', 'data': {'a': 1}, 'timestamp': 't'}
        with mock.patch.object(self.client.session, 'get', return_value=response(200, job)) as get:
            fetched = self.client.fetch_job(17)

        get.assert_called_once_with('http://queue.local/print-queue/jobs/17', timeout=3)
        assert fetched.id == 17
        assert fetched.data == {'a': 1}

    def test_fetch_missing_job(self):
        with mock.patch.object(self.client.session, 'get', return_value=response(404)):
            with pytest.raises(JobNotFoundError):
                self.client.fetch_job(17)

    @pytest.mark.parametrize('error', [
        requests.exceptions.Timeout(),
        requests.exceptions.ConnectionError(),
    ])
    def test_fetch_unreachable_returns_none(self, error):
        with mock.patch.object(self.client.session, 'get', side_effect=error):
            assert self.client.fetch_job(17) is None

    def test_fetch_server_error(self):
        with mock.patch.object(self.client.session, 'get', return_value=response(502, text='bad')):
            with pytest.raises(QueueError):
                self.client.fetch_job(17)

    def test_list_jobs(self):
        listing = {'jobs': [{'id': 1}, {'id': 2}]}
        with mock.patch.object(self.client.session, 'get', return_value=response(200, listing)):
            assert self.client.list_jobs() == [{'id': 1}, {'id': 2}]

    def test_report_completion(self):
        with mock.patch.object(self.client.session, 'post', return_value=response(200)) as post:
            result = self.client.report_completion(42, {'success': True, 'method': 'hardware'})

        assert result['success']
        url = post.call_args[0][0]
        body = post.call_args[1]['json']
        assert url == 'http://api.local/orders/42/print-status'
        assert body['impresso'] is True
        assert body['printedBy'] == 'local-print-agent'
        assert body['method'] == 'hardware'

    def test_report_completion_retryable(self):
        with mock.patch.object(self.client.session, 'post', return_value=response(503)):
            result = self.client.report_completion(42, {'success': True})

        assert result == {'success': False, 'error': 'Server error 503', 'status_code': 503,
                          'retry': True}

    def test_report_completion_rejected(self):
        with mock.patch.object(self.client.session, 'post', return_value=response(404, text='no')):
            result = self.client.report_completion(42, {'success': True})

        assert result['retry'] is False

    def test_report_without_upstream(self):
        client = UpstreamClient(queue_url='http://queue.local')

        assert client.report_completion(1, {'success': True})['retry'] is False


class TestCompletionNotifier:
    """Background confirmation with bounded retry"""

    def test_delivers_in_background(self):
        client = mock.Mock()
        client.report_completion.return_value = {'success': True}
        notifier = CompletionNotifier(client, retry_delay=0)
        notifier.start()
        try:
            assert notifier.submit(5, {'success': True, 'method': 'fallback'})
            assert notifier.drain(timeout=5)
        finally:
            notifier.stop()

        client.report_completion.assert_called_once_with(5, {'success': True, 'method': 'fallback'})
        assert notifier.get_status()['recent'][0]['order_id'] == 5

    def test_bounded_retry(self):
        client = mock.Mock()
        client.report_completion.return_value = {'success': False, 'error': 'Timeout', 'retry': True}
        notifier = CompletionNotifier(client, max_retries=3, retry_delay=0)
        notifier.start()
        try:
            notifier.submit(5, {'success': True})
            assert notifier.drain(timeout=5)
        finally:
            notifier.stop()

        assert client.report_completion.call_count == 3

    def test_no_retry_when_rejected(self):
        client = mock.Mock()
        client.report_completion.return_value = {'success': False, 'error': 'no', 'retry': False}
        notifier = CompletionNotifier(client, max_retries=3, retry_delay=0)
        notifier.start()
        try:
            notifier.submit(5, {'success': True})
            notifier.drain(timeout=5)
        finally:
            notifier.stop()

        assert client.report_completion.call_count == 1

    def test_client_exception_is_contained(self):
        client = mock.Mock()
        client.report_completion.side_effect = [RuntimeError('boom'), {'success': True}]
        notifier = CompletionNotifier(client, retry_delay=0)
        notifier.start()
        try:
            notifier.submit(1, {'success': True})
            notifier.submit(2, {'success': True})
            assert notifier.drain(timeout=5)
        finally:
            notifier.stop()

        assert client.report_completion.call_count == 2

    def test_failed_prints_not_confirmed(self):
        notifier = CompletionNotifier(mock.Mock())

        assert not notifier.submit(5, {'success': False, 'error': 'x'})
        assert not notifier.submit(None, {'success': True})
        assert notifier.drain(timeout=0)


class TestQueuePoller:
    """Agent-side pickup"""

    def setup_method(self):
        self.client = mock.Mock()
        self.client.queue_url = 'http://queue.local'
        self.handled = []
        self.poller = QueuePoller(self.client, self._handle, interval=0)

    def _handle(self, job):
        self.handled.append(job.id)
        return {'success': True, 'method': 'fallback', 'detail': 'browser'}

    def test_poll_single_job(self):
        self.client.fetch_job.return_value = PrintJob(3, 'order', {'a': 1}, 't')

        result = self.poller.poll(3)

        assert result['success']
        assert self.handled == [3]

    def test_poll_unreachable(self):
        self.client.fetch_job.return_value = None

        assert self.poller.poll(3) is None
        assert self.handled == []

    def test_poll_missing(self):
        self.client.fetch_job.side_effect = JobNotFoundError(3)

        with pytest.raises(JobNotFoundError):
            self.poller.poll(3)

    def test_poll_once_prints_each_job_once(self):
        self.client.list_jobs.return_value = [{'id': 1}, {'id': 2, 'fetched': True}, {'id': 3}]
        self.client.fetch_job.side_effect = lambda job_id: PrintJob(job_id, 'order', {}, 't')

        first = self.poller.poll_once()
        second = self.poller.poll_once()

        assert [r['jobId'] for r in first] == [1, 3]
        assert second == []
        assert self.handled == [1, 3]

    def test_poll_once_skips_vanished(self):
        self.client.list_jobs.return_value = [{'id': 1}]
        self.client.fetch_job.side_effect = JobNotFoundError(1)

        assert self.poller.poll_once() == []

    def test_run_until_stopped(self):
        def list_then_stop():
            self.poller.stop()
            return []
        self.client.list_jobs.side_effect = list_then_stop

        self.poller.run()

        assert not self.poller.running
        self.client.list_jobs.assert_called_once()
