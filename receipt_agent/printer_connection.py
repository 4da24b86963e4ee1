# Printer Connection - claimed USB handles plus the stateless spooler/browser/archive transports

import errno
import logging
import os
import subprocess
import tempfile
import threading
import time
import webbrowser
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .device_detector import PrinterDescriptor, TRANSPORT_USB
from .errors import ConnectError, TransferError
from .platform_caps import SPOOLER_CUPS, SPOOLER_WIN32

# USB support - optional
try:
    import usb.core
    import usb.util
    USB_AVAILABLE = True
except ImportError:
    USB_AVAILABLE = False

logger = logging.getLogger(__name__)

STATE_DISCONNECTED = 'disconnected'
STATE_CONNECTING = 'connecting'
STATE_CONNECTED = 'connected'
STATE_TRANSFERRING = 'transferring'

# One live handle per physical device in this process; a second claim fails fast
_claims_lock = threading.Lock()
_claimed_keys = set()


def claimed_devices() -> set:
    with _claims_lock:
        return set(_claimed_keys)


class PrinterHandle:
    """Live, exclusively claimed USB printer"""

    def __init__(self, descriptor: PrinterDescriptor):
        self.descriptor = descriptor
        self.state = STATE_DISCONNECTED
        self.device = None
        self.endpoint = None
        self._registered = False
        self._claimed = False
        self._detached = False

    @property
    def connected(self) -> bool:
        return self.state == STATE_CONNECTED

    def __repr__(self):
        return f"<PrinterHandle {self.descriptor.name} {self.state}>"


class UsbConnector:
    """open -> configure -> claim -> transfer -> release for USB thermal printers"""

    def __init__(self, timeout_ms: int = 5000, interface: int = 0):
        self.timeout_ms = timeout_ms
        self.interface = interface

    def connect(self, descriptor: PrinterDescriptor) -> PrinterHandle:
        """Claim the device; anything partially acquired is released on failure"""
        if descriptor.transport != TRANSPORT_USB:
            raise ConnectError(f"{descriptor.name} is not a USB printer")
        if not USB_AVAILABLE:
            raise ConnectError("pyusb is not installed")

        with _claims_lock:
            if descriptor.key in _claimed_keys:
                raise ConnectError(f"Printer {descriptor.name} is busy", busy=True)
            _claimed_keys.add(descriptor.key)

        handle = PrinterHandle(descriptor)
        handle._registered = True
        handle.state = STATE_CONNECTING
        try:
            dev = self._open(descriptor)
            handle.device = dev
            self._detach_kernel_driver(handle)
            dev.set_configuration()
            usb.util.claim_interface(dev, self.interface)
            handle._claimed = True
            handle.endpoint = self._out_endpoint(dev)
        except usb.core.USBError as e:
            self.release(handle)
            busy = e.errno in (errno.EBUSY, errno.EACCES)
            raise ConnectError(
                f"Could not claim {descriptor.name}: {e}",
                busy=busy,
                details={'errno': e.errno},
            )
        except ConnectError:
            self.release(handle)
            raise
        except Exception as e:
            # NoBackendError, NotImplementedError, missing interface
            self.release(handle)
            raise ConnectError(f"Could not open {descriptor.name}: {e}") from e

        handle.state = STATE_CONNECTED
        logger.info("USB printer connected: %s", descriptor.name)
        return handle

    def _open(self, descriptor: PrinterDescriptor):
        def same_port(dev):
            if descriptor.bus is not None and dev.bus != descriptor.bus:
                return False
            if descriptor.address is not None and dev.address != descriptor.address:
                return False
            return True

        dev = usb.core.find(
            idVendor=descriptor.vendor_id,
            idProduct=descriptor.product_id,
            custom_match=same_port,
        )
        if dev is None:
            raise ConnectError(f"USB printer {descriptor.name} not found (unplugged?)")
        return dev

    def _detach_kernel_driver(self, handle: PrinterHandle):
        # usblp grabs thermal printers on Linux
        try:
            if handle.device.is_kernel_driver_active(self.interface):
                handle.device.detach_kernel_driver(self.interface)
                handle._detached = True
        except NotImplementedError:
            pass  # not supported on Windows/macOS backends

    def _out_endpoint(self, dev):
        cfg = dev.get_active_configuration()
        intf = cfg[(self.interface, 0)]
        endpoint = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: (
                usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_OUT
            ),
        )
        if endpoint is None:
            raise ConnectError("USB printer has no bulk OUT endpoint")
        return endpoint

    def send(self, handle: Optional[PrinterHandle], data: bytes) -> int:
        """Write bytes to a connected handle; a failed transfer releases the handle"""
        if handle is None or not handle.connected:
            raise TransferError("Printer is not connected")

        handle.state = STATE_TRANSFERRING
        try:
            written = handle.endpoint.write(data, timeout=self.timeout_ms)
        except usb.core.USBTimeoutError as e:
            self.release(handle)
            raise TransferError(f"USB write timed out after {self.timeout_ms} ms", timed_out=True,
                                details={'errno': e.errno})
        except usb.core.USBError as e:
            self.release(handle)
            raise TransferError(f"USB write failed: {e}", details={'errno': e.errno})

        if written != len(data):
            self.release(handle)
            raise TransferError(f"Short USB write: {written}/{len(data)} bytes")

        handle.state = STATE_CONNECTED
        logger.debug("Wrote %d bytes to %s", written, handle.descriptor.name)
        return written

    def release(self, handle: Optional[PrinterHandle]):
        """Give the device back. Safe to call any number of times."""
        if handle is None:
            return
        dev = handle.device
        try:
            if dev is not None:
                if handle._claimed:
                    try:
                        usb.util.release_interface(dev, self.interface)
                    except usb.core.USBError as e:
                        logger.warning("release_interface failed: %s", e)
                if handle._detached:
                    try:
                        dev.attach_kernel_driver(self.interface)
                    except (usb.core.USBError, NotImplementedError) as e:
                        logger.debug("attach_kernel_driver failed: %s", e)
                try:
                    usb.util.dispose_resources(dev)
                except usb.core.USBError as e:
                    logger.warning("dispose_resources failed: %s", e)
        finally:
            if handle._registered:
                with _claims_lock:
                    _claimed_keys.discard(handle.descriptor.key)
            was_open = handle.state != STATE_DISCONNECTED
            handle.device = None
            handle.endpoint = None
            handle._registered = False
            handle._claimed = False
            handle._detached = False
            handle.state = STATE_DISCONNECTED
            if was_open:
                logger.debug("Released %s", handle.descriptor.name)

    @contextmanager
    def session(self, descriptor: PrinterDescriptor):
        """Scoped claim: the handle is released on every exit path"""
        handle = self.connect(descriptor)
        try:
            yield handle
        finally:
            self.release(handle)


class SpoolerTransport:
    """Hands a receipt to the OS print command (lp / notepad). No connection state."""

    def __init__(self, kind: Optional[str], timeout: float = 10, encoding: str = 'utf-8'):
        self.kind = kind
        self.timeout = timeout
        self.encoding = encoding

    def _command(self, descriptor: Optional[PrinterDescriptor], path: str) -> list:
        named = descriptor is not None and not descriptor.system_default
        if self.kind == SPOOLER_WIN32:
            if named:
                return ['notepad', '/pt', path, descriptor.name]
            return ['notepad', '/p', path]
        if named:
            return ['lp', '-d', descriptor.name, path]
        return ['lp', path]

    def send(self, descriptor: Optional[PrinterDescriptor], payload: Union[str, bytes]) -> str:
        """Spool synchronously; the temp file is removed whatever happens"""
        if self.kind not in (SPOOLER_CUPS, SPOOLER_WIN32):
            raise TransferError("No OS print spooler available")

        data = payload.encode(self.encoding) if isinstance(payload, str) else payload
        fd, path = tempfile.mkstemp(prefix='receipt_', suffix='.txt')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            command = self._command(descriptor, path)
            logger.debug("Executing: %s", ' '.join(command))
            result = subprocess.run(command, capture_output=True, text=True,
                                    timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise TransferError(f"Print command timed out after {self.timeout}s", timed_out=True)
        except OSError as e:
            raise TransferError(f"Print command failed to start: {e}")
        finally:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

        if result.returncode != 0:
            raise TransferError(
                f"Print command exited with {result.returncode}: {result.stderr.strip()}",
                details={'returncode': result.returncode},
            )
        if result.stderr.strip():
            logger.warning("Print command warning: %s", result.stderr.strip())
        return result.stdout.strip()


class BrowserTransport:
    """Opens a self-printing HTML receipt in the default browser"""

    MAX_PREVIEW_AGE = 3600  # seconds

    def __init__(self, enabled: bool = True, preview_dir: Union[str, Path] = None):
        self.enabled = enabled
        self.preview_dir = Path(preview_dir or Path(tempfile.gettempdir()) / 'receipt_agent_preview')

    def open(self, markup: str) -> str:
        """Hand off to the browser; returns once the browser accepted the page"""
        if not self.enabled:
            raise TransferError("Browser printing is not available on this host")
        path = self.preview_dir / f"receipt_{int(time.time() * 1000)}.html"
        try:
            self.preview_dir.mkdir(parents=True, exist_ok=True)
            self._prune()
            path.write_text(markup, encoding='utf-8')
            opened = webbrowser.open(path.resolve().as_uri())
        except (OSError, webbrowser.Error) as e:
            raise TransferError(f"Could not open print preview: {e}")
        if not opened:
            raise TransferError("Browser refused the print preview")
        return str(path)

    def _prune(self):
        # Previews must outlive the hand-off, so they are cleaned up lazily
        cutoff = time.time() - self.MAX_PREVIEW_AGE
        for old in self.preview_dir.glob('receipt_*.html'):
            try:
                if old.stat().st_mtime < cutoff:
                    old.unlink()
            except FileNotFoundError:
                pass


class ArchiveTransport:
    """Last resort: keep the receipt text on disk for a manual reprint"""

    def __init__(self, archive_dir: Union[str, Path] = None):
        self.archive_dir = Path(archive_dir) if archive_dir else None

    @property
    def enabled(self) -> bool:
        return self.archive_dir is not None

    def save(self, text: str) -> str:
        if not self.enabled:
            raise TransferError("Receipt archive is disabled")
        try:
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
            path = self.archive_dir / f"pedido_{stamp}.txt"
            path.write_text(text, encoding='utf-8')
        except OSError as e:
            raise TransferError(f"Could not archive receipt: {e}")
        return str(path)
