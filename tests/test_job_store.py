# Tests for the on-disk print queue

import json
import threading

import pytest
from receipt_agent.errors import JobNotFoundError, QueueError
from receipt_agent.job_store import JobStore, PrintJob


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestJobStore:
    """enqueue -> fetch (deadline armed) -> deleted"""

    def setup_method(self):
        self.clock = FakeClock()

    def make_store(self, tmp_path, **kwargs):
        return JobStore(tmp_path / 'queue', clock=self.clock, **kwargs)

    def test_enqueue_writes_job_file(self, tmp_path):
        store = self.make_store(tmp_path)

        job = store.enqueue('x', {'a': 1})

        path = tmp_path / 'queue' / f'print-{job.id}.json'
        assert job.id == 1_700_000_000_000
        assert json.loads(path.read_text()) == {
            'id': job.id, 'type': 'x', 'data': {'a': 1}, 'timestamp': job.timestamp,
        }

    def test_ids_unique_within_same_millisecond(self, tmp_path):
        store = self.make_store(tmp_path)

        ids = [store.enqueue('order', {'n': n}).id for n in range(5)]

        assert len(set(ids)) == 5
        assert ids == sorted(ids)

    def test_fetch_returns_data_verbatim(self, tmp_path):
        store = self.make_store(tmp_path)
        job = store.enqueue('x', {'a': 1})

        fetched = store.fetch(str(job.id))

        assert fetched.data == {'a': 1}
        assert fetched.kind == 'x'

    def test_fetch_within_grace_period(self, tmp_path):
        store = self.make_store(tmp_path, grace_period=30)
        job = store.enqueue('x', {'a': 1})

        store.fetch(job.id)
        self.clock.advance(29)

        assert store.fetch(job.id).data == {'a': 1}

    def test_fetch_after_grace_period_is_gone(self, tmp_path):
        store = self.make_store(tmp_path, grace_period=30)
        job = store.enqueue('x', {'a': 1})

        store.fetch(job.id)
        self.clock.advance(31)

        with pytest.raises(JobNotFoundError):
            store.fetch(job.id)
        assert not (tmp_path / 'queue' / f'print-{job.id}.json').exists()

    def test_second_fetch_does_not_extend_deadline(self, tmp_path):
        store = self.make_store(tmp_path, grace_period=30)
        job = store.enqueue('x', {})

        store.fetch(job.id)
        self.clock.advance(20)
        store.fetch(job.id)
        self.clock.advance(15)

        with pytest.raises(JobNotFoundError):
            store.fetch(job.id)

    @pytest.mark.parametrize('bad_id', ['nope', '-1', '0', '../etc/passwd'])
    def test_bad_ids(self, tmp_path, bad_id):
        store = self.make_store(tmp_path)

        with pytest.raises(JobNotFoundError):
            store.fetch(bad_id)

    def test_unknown_id(self, tmp_path):
        with pytest.raises(JobNotFoundError):
            self.make_store(tmp_path).fetch(123)

    def test_corrupt_file(self, tmp_path):
        store = self.make_store(tmp_path)
        job = store.enqueue('x', {})
        (tmp_path / 'queue' / f'print-{job.id}.json').write_text('{not json')

        with pytest.raises(QueueError):
            store.fetch(job.id)

    def test_list_filters_foreign_files(self, tmp_path):
        store = self.make_store(tmp_path)
        job = store.enqueue('x', {})
        (tmp_path / 'queue' / 'notes.txt').write_text('ignore me')
        (tmp_path / 'queue' / '.tmp-abc.json').write_text('{}')

        jobs = store.list_jobs()

        assert [j['file'] for j in jobs] == [f'print-{job.id}.json']
        assert jobs[0]['fetched'] is False

    def test_list_empty_when_dir_missing(self, tmp_path):
        assert self.make_store(tmp_path).list_jobs() == []

    def test_purge_fetched_after_grace(self, tmp_path):
        store = self.make_store(tmp_path, grace_period=30)
        fetched = store.enqueue('x', {})
        waiting = store.enqueue('x', {})
        store.fetch(fetched.id)

        self.clock.advance(31)
        removed = store.purge_expired()

        assert removed == 1
        assert [j['id'] for j in store.list_jobs()] == [waiting.id]

    def test_purge_unfetched_after_ttl(self, tmp_path):
        store = self.make_store(tmp_path, unfetched_ttl=600)
        store.enqueue('x', {})

        self.clock.advance(599)
        assert store.purge_expired() == 0
        self.clock.advance(2)
        assert store.purge_expired() == 1
        assert len(store) == 0

    def test_fetch_after_unfetched_ttl_is_gone(self, tmp_path):
        store = self.make_store(tmp_path, unfetched_ttl=600)
        job = store.enqueue('x', {})

        self.clock.advance(601)

        with pytest.raises(JobNotFoundError):
            store.fetch(job.id)
        assert not (tmp_path / 'queue' / f'print-{job.id}.json').exists()
        assert store.list_jobs() == []

    def test_unfetched_ttl_disabled(self, tmp_path):
        store = self.make_store(tmp_path, unfetched_ttl=None)
        store.enqueue('x', {})

        self.clock.advance(10 ** 6)

        assert store.purge_expired() == 0

    def test_purge_tolerates_missing_file(self, tmp_path):
        store = self.make_store(tmp_path, grace_period=30)
        job = store.enqueue('x', {})
        store.fetch(job.id)
        (tmp_path / 'queue' / f'print-{job.id}.json').unlink()

        self.clock.advance(31)

        assert store.purge_expired() == 0

    def test_concurrent_enqueue(self, tmp_path):
        store = self.make_store(tmp_path)
        ids = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                job = store.enqueue('x', {})
                with lock:
                    ids.append(job.id)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 40
        assert len(store.list_jobs()) == 40


class TestPrintJob:
    def test_defaults_kind(self):
        job = PrintJob.from_dict({'id': '5', 'data': {'a': 1}})

        assert job.id == 5
        assert job.kind == 'order'
