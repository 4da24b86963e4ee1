# HTTP listener - push printing (/print), status, and the print-queue mailbox
# Standard library http.server; one thread per request

import json
import logging
import re
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict
from urllib.parse import urlsplit

from .agent import PrintAgent
from .errors import JobNotFoundError, QueueError


logger = logging.getLogger(__name__)

JOB_PATH_RE = re.compile(r'^/print-queue/jobs/([^/]+)$')
MAX_BODY_BYTES = 1024 * 1024


class BadRequest(Exception):
    pass


def make_handler(agent: PrintAgent):
    """Bind a request handler class to one PrintAgent"""

    class Handler(BaseHTTPRequestHandler):
        server_version = 'ReceiptPrintAgent/1.0'

        # --- helpers -------------------------------------------------------

        def _send_json(self, status: int, body: Dict[str, Any]):
            data = json.dumps(body, default=str).encode('utf-8')
            self.send_response(status)
            self.send_header('Content-Type', 'application/json; charset=utf-8')
            self.send_header('Content-Length', str(len(data)))
            self.send_header('Access-Control-Allow-Origin', '*')
            self.end_headers()
            self.wfile.write(data)

        def _read_json(self) -> Dict[str, Any]:
            try:
                length = int(self.headers.get('Content-Length') or 0)
            except ValueError:
                raise BadRequest('Invalid Content-Length header')
            if length < 0:
                raise BadRequest('Invalid Content-Length header')
            if length > MAX_BODY_BYTES:
                raise BadRequest('Request body too large')
            raw = self.rfile.read(length) if length else b''
            if not raw.strip():
                return {}
            try:
                body = json.loads(raw.decode('utf-8'))
            except (UnicodeDecodeError, ValueError):
                raise BadRequest('Body must be valid JSON')
            if not isinstance(body, dict):
                raise BadRequest('Body must be a JSON object')
            return body

        def _route(self) -> str:
            return urlsplit(self.path).path.rstrip('/') or '/'

        def _base_url(self) -> str:
            public = agent.config.get('public_url')
            if public:
                return public.rstrip('/')
            host = self.headers.get('Host') or f"{self.server.server_address[0]}:{self.server.server_address[1]}"
            return f"http://{host}"

        def _dispatch(self, routes):
            path = self._route()
            try:
                for pattern, handler in routes:
                    match = pattern.match(path) if hasattr(pattern, 'match') else None
                    if match:
                        return handler(*match.groups())
                    if pattern == path:
                        return handler()
                self._send_json(404, {'success': False, 'message': f'No route for {path}'})
            except BadRequest as e:
                self._send_json(400, {'success': False, 'message': str(e)})
            except JobNotFoundError as e:
                self._send_json(404, {'success': False, 'message': e.message})
            except Exception as e:
                logger.exception(f"Error handling {self.command} {path}")
                self._send_json(500, {'success': False, 'message': str(e)})

        # --- verbs ---------------------------------------------------------

        def do_GET(self):
            self._dispatch([
                ('/status', self.get_status),
                ('/print-queue/jobs', self.list_jobs),
                (JOB_PATH_RE, self.get_job),
            ])

        def do_POST(self):
            self._dispatch([
                ('/print', self.post_print),
                ('/test-print', self.post_test_print),
                ('/print-queue/jobs', self.post_job),
            ])

        def do_OPTIONS(self):
            self.send_response(204)
            self.send_header('Access-Control-Allow-Origin', '*')
            self.send_header('Access-Control-Allow-Methods', 'GET, POST, OPTIONS')
            self.send_header('Access-Control-Allow-Headers', 'Content-Type, Authorization')
            self.end_headers()

        # --- routes --------------------------------------------------------

        def get_status(self):
            self._send_json(200, agent.get_status())

        def post_print(self):
            body = self._read_json()
            if not body.get('printText'):
                raise BadRequest('printText is required')
            logger.info(f"Print request for order {body.get('orderId', '-')}")
            result = agent.handle_incoming_job(body)
            self._send_json(200 if result['success'] else 500, result)

        def post_test_print(self):
            result = agent.test_print()
            self._send_json(200 if result['success'] else 500, result)

        def post_job(self):
            body = self._read_json()
            if 'data' not in body:
                raise BadRequest('data is required')
            try:
                job = agent.store.enqueue(body.get('type'), body['data'])
            except QueueError as e:
                self._send_json(500, {'success': False, 'message': e.message})
                return
            self._send_json(200, {
                'success': True,
                'jobId': job.id,
                'downloadUrl': f"{self._base_url()}/print-queue/jobs/{job.id}",
            })

        def get_job(self, job_id: str):
            job = agent.store.fetch(job_id)
            self._send_json(200, job.to_dict())

        def list_jobs(self):
            jobs = agent.store.list_jobs()
            self._send_json(200, {
                'success': True,
                'queueDir': str(agent.store.queue_dir),
                'count': len(jobs),
                'jobs': jobs,
            })

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

    return Handler


def create_server(agent: PrintAgent, host: str = None, port: int = None) -> ThreadingHTTPServer:
    host = agent.config.get('http_host', '0.0.0.0') if host is None else host
    port = agent.config.get('http_port', 3003) if port is None else port
    server = ThreadingHTTPServer((host, port), make_handler(agent))
    server.daemon_threads = True
    return server

