# Job Store - on-disk mailbox for remote print jobs
# One JSON file per job: print-<id>.json with {id, type, data, timestamp}

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import JobNotFoundError, QueueError


logger = logging.getLogger(__name__)

JOB_PREFIX = 'print-'
JOB_SUFFIX = '.json'


@dataclass
class PrintJob:
    id: int
    kind: str
    data: Any
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.kind,
            'data': self.data,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PrintJob":
        return cls(
            id=int(raw['id']),
            kind=raw.get('type') or 'order',
            data=raw.get('data'),
            timestamp=raw.get('timestamp'),
        )


def parse_job_id(value) -> int:
    try:
        job_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise JobNotFoundError(value)
    if job_id <= 0:
        raise JobNotFoundError(value)
    return job_id


class JobStore:
    """Enqueue, fetch-once-then-expire, and sweep print jobs"""

    def __init__(self, queue_dir: Union[str, Path], grace_period: float = 30,
                 unfetched_ttl: Optional[float] = 3600,
                 clock: Callable[[], float] = time.time):
        self.queue_dir = Path(queue_dir)
        self.grace_period = grace_period
        self.unfetched_ttl = unfetched_ttl
        self.clock = clock
        self.lock = threading.Lock()
        self._deadlines: Dict[int, float] = {}
        self._last_id = 0

    def _path(self, job_id: int) -> Path:
        return self.queue_dir / f"{JOB_PREFIX}{job_id}{JOB_SUFFIX}"

    def _ensure_dir(self):
        self.queue_dir.mkdir(parents=True, exist_ok=True)

    def _write_atomic(self, path: Path, payload: Dict[str, Any]):
        # Readers only ever see complete files: write aside, then rename over
        fd, tmp = tempfile.mkstemp(dir=str(self.queue_dir), prefix='.tmp-', suffix=JOB_SUFFIX)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.remove(tmp)
            except FileNotFoundError:
                pass
            raise

    def enqueue(self, kind: Optional[str], data: Any) -> PrintJob:
        """Persist a new job; the id is its creation time in milliseconds"""
        now = self.clock()
        with self.lock:
            self._ensure_dir()
            job_id = max(int(now * 1000), self._last_id + 1)
            while self._path(job_id).exists():
                job_id += 1
            self._last_id = job_id

            job = PrintJob(
                id=job_id,
                kind=kind or 'order',
                data=data,
                timestamp=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            )
            try:
                self._write_atomic(self._path(job_id), job.to_dict())
            except OSError as e:
                raise QueueError(f"Could not write print job: {e}")

        logger.info(f"Print job {job_id} queued ({job.kind})")
        return job

    def fetch(self, job_id) -> PrintJob:
        """Return a job and arm its deletion deadline on first retrieval"""
        job_id = parse_job_id(job_id)
        now = self.clock()
        with self.lock:
            if self._expired(job_id, now):
                self._delete(job_id)
                raise JobNotFoundError(job_id)
            deadline = self._deadlines.get(job_id)

            try:
                raw = json.loads(self._path(job_id).read_text(encoding='utf-8'))
            except FileNotFoundError:
                self._deadlines.pop(job_id, None)
                raise JobNotFoundError(job_id)
            except (OSError, ValueError) as e:
                raise QueueError(f"Print job {job_id} is unreadable: {e}")

            if deadline is None:
                self._deadlines[job_id] = now + self.grace_period
                logger.debug(f"Job {job_id} fetched; deleting in {self.grace_period}s")

        return PrintJob.from_dict(raw)

    def _job_ids(self) -> List[int]:
        if not self.queue_dir.exists():
            return []
        ids = []
        for entry in self.queue_dir.iterdir():
            name = entry.name
            if not (name.startswith(JOB_PREFIX) and name.endswith(JOB_SUFFIX)):
                continue
            try:
                ids.append(int(name[len(JOB_PREFIX):-len(JOB_SUFFIX)]))
            except ValueError:
                continue
        return sorted(ids)

    def _expired(self, job_id: int, now: float) -> bool:
        deadline = self._deadlines.get(job_id)
        if deadline is not None:
            return now >= deadline
        if self.unfetched_ttl is None:
            return False
        return now - job_id / 1000.0 >= self.unfetched_ttl

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Queued jobs that are still retrievable, oldest first"""
        now = self.clock()
        with self.lock:
            return [
                {
                    'file': self._path(job_id).name,
                    'id': job_id,
                    'created': datetime.fromtimestamp(job_id / 1000.0, tz=timezone.utc).isoformat(),
                    'fetched': job_id in self._deadlines,
                }
                for job_id in self._job_ids()
                if not self._expired(job_id, now)
            ]

    def _delete(self, job_id: int) -> bool:
        self._deadlines.pop(job_id, None)
        try:
            self._path(job_id).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not delete job {job_id}: {e}")
            return False
        logger.debug(f"Job {job_id} deleted")
        return True

    def purge_expired(self) -> int:
        """Delete fetched jobs past their grace period and jobs nobody fetched in time"""
        now = self.clock()
        removed = 0
        with self.lock:
            present = set(self._job_ids())
            for job_id in present:
                if self._expired(job_id, now) and self._delete(job_id):
                    removed += 1
            # deadlines for files removed out from under us
            for job_id in list(self._deadlines):
                if job_id not in present:
                    del self._deadlines[job_id]
        if removed:
            logger.info(f"Purged {removed} expired print job(s)")
        return removed

    def __len__(self) -> int:
        return len(self.list_jobs())
