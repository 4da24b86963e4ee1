# Print Dispatcher - ordered fallback chain: hardware, then OS spooler, then browser
# Strictly sequential; transports are never raced against each other

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .device_detector import (
    DeviceDetector,
    DetectionResult,
    PrinterDescriptor,
    system_default_descriptor,
)
from .errors import ConnectError, DispatchError, TransferError
from .printer_connection import (
    ArchiveTransport,
    BrowserTransport,
    SpoolerTransport,
    UsbConnector,
)
from .receipt_formatter import OrderPayload, ReceiptFormatter


logger = logging.getLogger(__name__)

METHOD_HARDWARE = 'hardware'
METHOD_FALLBACK = 'fallback'
METHOD_ARCHIVE = 'archive'


@dataclass
class PrintResult:
    """Outcome of one dispatch; failures carry an error and a hint instead of raising"""
    success: bool
    method: Optional[str] = None
    detail: Optional[str] = None
    error: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def failed(cls, error: DispatchError) -> "PrintResult":
        return cls(success=False, error=error.message, hint=error.hint)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {'success': True, 'method': self.method, 'detail': self.detail}
        return {'success': False, 'error': self.error, 'hint': self.hint}


class _Renderings:
    """Lazily rendered forms of one receipt; each is built only if its path is tried"""

    def __init__(self, control: Callable[[], bytes], text: Callable[[], str],
                 markup: Callable[[], str]):
        self.control = control
        self.text = text
        self.markup = markup


class PrintDispatcher:
    """Runs one print request through the fallback chain to completion"""

    def __init__(self, detector: DeviceDetector, formatter: ReceiptFormatter,
                 connector: UsbConnector = None, spooler: SpoolerTransport = None,
                 browser: BrowserTransport = None, archive: ArchiveTransport = None):
        self.detector = detector
        self.formatter = formatter
        self.connector = connector
        self.spooler = spooler
        self.browser = browser
        self.archive = archive

    def print_order(self, order: OrderPayload) -> PrintResult:
        fmt = self.formatter
        return self._run(_Renderings(
            control=lambda: fmt.render_control_stream(order),
            text=lambda: fmt.render_text(order),
            markup=lambda: fmt.render_markup(order),
        ), label=f"order {order.id or '-'}")

    def print_text(self, text: str) -> PrintResult:
        """Print receipt text that was already laid out upstream"""
        fmt = self.formatter
        return self._run(_Renderings(
            control=lambda: fmt.render_text_stream(text),
            text=lambda: text,
            markup=lambda: fmt.render_text_markup(text),
        ), label="text receipt")

    def _run(self, renderings: _Renderings, label: str) -> PrintResult:
        try:
            result = self._dispatch(renderings)
        except DispatchError as e:
            logger.error(f"Could not print {label}: {e.message}")
            return PrintResult.failed(e)
        except Exception as e:
            logger.exception(f"Unexpected error printing {label}")
            return PrintResult.failed(DispatchError(e))
        logger.info(f"Printed {label} via {result.method} ({result.detail})")
        return result

    def _dispatch(self, renderings: _Renderings) -> PrintResult:
        detection = self.detector.detect_devices()
        last_error = detection.error

        # 1. hardware, one attempt per call
        target = self._pick(detection.hardware)
        if target is not None and self.connector is not None:
            try:
                with self.connector.session(target) as handle:
                    self.connector.send(handle, renderings.control())
                return PrintResult(True, METHOD_HARDWARE, target.name)
            except (ConnectError, TransferError) as e:
                last_error = e
                logger.warning(f"Hardware print on {target.name} failed, falling back: {e}")
            except Exception as e:
                last_error = e
                logger.warning(f"Hardware print on {target.name} failed unexpectedly, falling back: {e}",
                               exc_info=True)
        elif detection.ok:
            logger.debug("No hardware printer detected; skipping USB")

        # 2. OS spooler
        if self.spooler is not None and self.spooler.kind:
            queue = self._spooler_target(detection)
            try:
                self.spooler.send(queue, renderings.text())
                return PrintResult(True, METHOD_FALLBACK, f"spooler:{queue.name}")
            except TransferError as e:
                last_error = e
                logger.warning(f"Spooler print on {queue.name} failed: {e}")

        # 3. browser print dialog
        if self.browser is not None and self.browser.enabled:
            try:
                self.browser.open(renderings.markup())
                return PrintResult(True, METHOD_FALLBACK, 'browser')
            except TransferError as e:
                last_error = e
                logger.warning(f"Browser print failed: {e}")
            except Exception as e:
                last_error = e
                logger.warning(f"Browser print failed unexpectedly: {e}", exc_info=True)

        # 4. keep it on disk for a manual reprint
        if self.archive is not None and self.archive.enabled:
            try:
                path = self.archive.save(renderings.text())
                logger.warning(f"No printer reachable; receipt archived to {path}")
                return PrintResult(True, METHOD_ARCHIVE, path)
            except TransferError as e:
                last_error = e
                logger.warning(f"Archiving receipt failed: {e}")

        raise DispatchError(last_error or RuntimeError("no print method available"))

    @staticmethod
    def _pick(candidates) -> Optional[PrinterDescriptor]:
        if not candidates:
            return None
        for descriptor in candidates:
            if descriptor.is_default:
                return descriptor
        return candidates[0]

    def _spooler_target(self, detection: DetectionResult) -> PrinterDescriptor:
        queue = self._pick(detection.spooler)
        return queue or system_default_descriptor()
