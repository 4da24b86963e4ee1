# Print Agent - wires detection, formatting, dispatch, queue and notifier together
# handle_incoming_job() is the single entry point for /print pushes and polled jobs

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from .device_detector import DeviceDetector
from .dispatcher import PrintDispatcher
from .job_store import JobStore, PrintJob
from .notifier import CompletionNotifier
from .platform_caps import Capabilities, probe_capabilities
from .printer_connection import (
    ArchiveTransport,
    BrowserTransport,
    SpoolerTransport,
    UsbConnector,
)
from .receipt_formatter import OrderPayload, ReceiptFormatter
from .upstream_client import UpstreamClient


logger = logging.getLogger(__name__)

SAMPLE_ORDER = OrderPayload(
    id='TEST',
    customer_name='Test Customer',
    description='1x Test item',
    notes='Printer test - no order',
    total=Decimal('0'),
    payment_method='N/A',
)


class PrintAgent:
    """Local print agent: dispatches receipts and confirms them upstream"""

    def __init__(self, config: Dict[str, Any], capabilities: Capabilities = None,
                 dispatcher: PrintDispatcher = None, store: JobStore = None,
                 notifier: CompletionNotifier = None, client: UpstreamClient = None):
        self.config = config
        self.capabilities = capabilities or probe_capabilities(config)
        self.client = client or UpstreamClient(
            queue_url=config.get('queue_url'),
            upstream_url=config.get('upstream_url'),
            api_key=config.get('api_key'),
            timeout=config.get('poll_timeout_seconds', 3),
        )
        self.dispatcher = dispatcher or self._build_dispatcher()
        self.store = store or JobStore(
            config.get('queue_dir', 'print-queue'),
            grace_period=config.get('grace_period_seconds', 30),
            unfetched_ttl=config.get('unfetched_ttl_seconds', 3600),
        )
        self.notifier = notifier or CompletionNotifier(
            self.client,
            max_retries=config.get('notify_max_retries', 3),
            retry_delay=config.get('notify_retry_delay_seconds', 2),
        )
        self.running = False
        self._sweeper = None
        self._stop_event = threading.Event()

    def _build_dispatcher(self) -> PrintDispatcher:
        config = self.config
        caps = self.capabilities
        detector = DeviceDetector(
            caps,
            vendor_ids=config.get('usb_vendor_ids'),
            printer_name=config.get('printer_name'),
            command_timeout=config.get('command_timeout_seconds', 10),
        )
        formatter = ReceiptFormatter(
            shop_name=config.get('shop_name', 'DELIVERY'),
            currency_symbol=config.get('currency_symbol', 'R$'),
            decimal_separator=config.get('decimal_separator', '.'),
        )
        return PrintDispatcher(
            detector,
            formatter,
            connector=UsbConnector(timeout_ms=config.get('usb_timeout_ms', 5000)) if caps.usb else None,
            spooler=SpoolerTransport(caps.spooler, timeout=config.get('command_timeout_seconds', 10)),
            browser=BrowserTransport(enabled=caps.browser),
            archive=ArchiveTransport(config.get('archive_dir')),
        )

    def start(self):
        """Start the confirmation worker and the queue sweeper"""
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self.notifier.start()
        self._sweeper = threading.Thread(target=self._sweep_loop, name='queue-sweeper', daemon=True)
        self._sweeper.start()
        logger.info("Print agent started")

    def stop(self):
        self.running = False
        self._stop_event.set()
        if self._sweeper:
            self._sweeper.join(timeout=2)
        self.notifier.stop()
        logger.info("Print agent stopped")

    def _sweep_loop(self):
        interval = self.config.get('sweep_interval_seconds', 5)
        while not self._stop_event.wait(interval):
            try:
                self.store.purge_expired()
            except Exception as e:
                logger.error(f"Queue sweep failed: {e}")

    def handle_incoming_job(self, job) -> Dict[str, Any]:
        """
        Print one job and queue its upstream confirmation.

        Accepts a PrintJob (polled) or a /print body with printText, orderData
        and orderId. Pre-rendered printText wins over orderData.
        """
        payload = job.data if isinstance(job, PrintJob) else job
        if not isinstance(payload, dict):
            return {'success': False, 'error': 'Print job has no payload',
                    'hint': 'Check the job data sent by the caller'}

        text = payload.get('printText')
        order_data = payload.get('orderData')
        if order_data is None and not text:
            order_data = payload  # queued jobs carry the order itself as data
        if not text and not isinstance(order_data, (dict, type(None))):
            logger.warning(f"Rejected print job with malformed orderData: {type(order_data).__name__}")
            return {'success': False, 'error': 'orderData must be an object',
                    'hint': 'Send the order as a JSON object or use printText'}
        if text and not isinstance(text, str):
            return {'success': False, 'error': 'printText must be a string',
                    'hint': 'Send the pre-rendered receipt as text'}
        order_id = payload.get('orderId')
        if order_id is None and isinstance(order_data, dict):
            order_id = OrderPayload.from_dict(order_data).id

        if text:
            result = self.dispatcher.print_text(text)
        else:
            result = self.dispatcher.print_order(OrderPayload.from_dict(order_data or {}))

        body = result.to_dict()
        if order_id is not None:
            self.notifier.submit(order_id, body)
        return body

    def test_print(self) -> Dict[str, Any]:
        return self.dispatcher.print_order(SAMPLE_ORDER).to_dict()

    def get_status(self) -> Dict[str, Any]:
        """Platform, printers and queue summary; detection problems degrade, never fail"""
        detection = self.dispatcher.detector.detect_devices()
        summary = detection.summary()
        return {
            'success': True,
            'message': 'Print agent running',
            'status': summary['status'],
            'platform': self.capabilities.platform,
            'capabilities': self.capabilities.to_dict(),
            'printers': summary['printers'],
            'error': summary.get('error'),
            'queue': {
                'dir': str(self.store.queue_dir),
                'count': len(self.store),
            },
            'notifier': self.notifier.get_status(),
            'timestamp': datetime.now().isoformat(),
        }

