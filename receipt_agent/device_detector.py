# Device Detector - enumerates USB thermal printers and OS print queues
# Descriptors are rebuilt on every call; USB printers come and go

import logging
import re
import subprocess
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional

from .errors import DetectionError
from .platform_caps import Capabilities, SPOOLER_CUPS, SPOOLER_WIN32

# USB support - optional
try:
    import usb.core
    import usb.util
    USB_AVAILABLE = True
except ImportError:
    USB_AVAILABLE = False

try:
    import win32print
except ImportError:
    win32print = None

logger = logging.getLogger(__name__)

TRANSPORT_USB = 'usb'
TRANSPORT_SPOOLER = 'spooler'
TRANSPORT_BROWSER = 'browser'

USB_CLASS_PRINTER = 7

# Vendors seen on thermal receipt printers
KNOWN_VENDOR_IDS = {
    0x04B8: 'Epson',
    0x0483: 'STMicroelectronics',
    0x0416: 'Winbond',
    0x0519: 'Star Micronics',
    0x1504: 'Bixolon',
    0x0FE6: 'ICS Advent',
    0x6868: 'XPrinter',
    0x0DD4: 'Custom',
}

LPSTAT_PRINTER_RE = re.compile(r'^(?:printer|impressora)\s+(\S+)')
LPSTAT_DEFAULT_RE = re.compile(r'(?:default destination|destino padrão do sistema):\s*(\S+)')


@dataclass(frozen=True)
class PrinterDescriptor:
    """A candidate output device; holds no live resource"""
    transport: str
    name: str
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    bus: Optional[int] = None
    address: Optional[int] = None
    is_default: bool = False
    system_default: bool = False

    @property
    def key(self) -> tuple:
        """Identity of the physical device, used for exclusive claims"""
        if self.transport == TRANSPORT_USB:
            return (TRANSPORT_USB, self.vendor_id, self.product_id, self.bus, self.address)
        return (self.transport, self.name)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.vendor_id is not None:
            data['vendor_id'] = f'0x{self.vendor_id:04x}'
        if self.product_id is not None:
            data['product_id'] = f'0x{self.product_id:04x}'
        return data


def system_default_descriptor() -> PrinterDescriptor:
    """Synthetic descriptor for whatever the OS prints to by default"""
    return PrinterDescriptor(
        transport=TRANSPORT_SPOOLER,
        name='system-default',
        is_default=True,
        system_default=True,
    )


@dataclass
class DetectionResult:
    devices: List[PrinterDescriptor] = field(default_factory=list)
    error: Optional[DetectionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def hardware(self) -> List[PrinterDescriptor]:
        return [d for d in self.devices if d.transport == TRANSPORT_USB]

    @property
    def spooler(self) -> List[PrinterDescriptor]:
        return [d for d in self.devices if d.transport == TRANSPORT_SPOOLER]

    def summary(self) -> Dict[str, Any]:
        if not self.ok:
            return {
                'status': 'degraded',
                'error': str(self.error),
                'printers': [d.to_dict() for d in self.devices],
            }
        return {
            'status': 'ok',
            'printers': [d.to_dict() for d in self.devices],
        }


def parse_vendor_ids(values: Iterable) -> List[int]:
    """Accept ints or hex strings ('0x04b8', '04b8') from config"""
    ids = []
    for value in values or []:
        if isinstance(value, int):
            ids.append(value)
        else:
            ids.append(int(str(value), 16))
    return ids


class DeviceDetector:
    """Finds printers across USB and the OS print spooler"""

    def __init__(self, capabilities: Capabilities, vendor_ids: Iterable = None,
                 printer_name: str = None, command_timeout: float = 5):
        self.capabilities = capabilities
        self.vendor_ids = set(parse_vendor_ids(vendor_ids) if vendor_ids is not None
                              else KNOWN_VENDOR_IDS)
        self.printer_name = printer_name
        self.command_timeout = command_timeout

    def is_candidate(self, vendor_id: int, name: str = '', device_class: int = None) -> bool:
        """Vendor allow-list, printer device class, or 'printer' in the product name"""
        if vendor_id in self.vendor_ids:
            return True
        if device_class == USB_CLASS_PRINTER:
            return True
        return 'printer' in (name or '').lower()

    def detect_devices(self) -> DetectionResult:
        """Enumerate USB first, then spooler queues. Never raises.

        Each source fails on its own: a hung lpstat keeps the USB printers
        found a moment earlier, and the result is reported as degraded.
        """
        devices = []
        errors = []
        for source, enumerate_source in (('USB', self.enumerate_usb),
                                         ('spooler', self.enumerate_spooler)):
            try:
                devices.extend(enumerate_source())
            except DetectionError as e:
                logger.warning("%s printer detection failed: %s", source, e)
                errors.append(e)
            except Exception as e:
                logger.warning("%s printer detection failed unexpectedly: %s", source, e)
                errors.append(DetectionError(f"Printer detection failed: {e}"))

        error = None
        if len(errors) == 1:
            error = errors[0]
        elif errors:
            error = DetectionError('; '.join(str(e) for e in errors))

        if not devices and error is None:
            logger.info("No printers matched; using the OS default print path")
            devices = [system_default_descriptor()]

        logger.debug("Detected %d candidate printer(s)", len(devices))
        return DetectionResult(devices=devices, error=error)

    def enumerate_usb(self) -> List[PrinterDescriptor]:
        if not (self.capabilities.usb and USB_AVAILABLE):
            return []
        try:
            found = list(usb.core.find(find_all=True))
        except usb.core.NoBackendError as e:
            raise DetectionError(f"USB backend unavailable: {e}")
        except usb.core.USBError as e:
            raise DetectionError(f"USB enumeration failed: {e}", {'errno': e.errno})

        printers = []
        for dev in found:
            name = self._usb_name(dev)
            if not self.is_candidate(dev.idVendor, name, self._usb_class(dev)):
                continue
            printers.append(PrinterDescriptor(
                transport=TRANSPORT_USB,
                name=name,
                vendor_id=dev.idVendor,
                product_id=dev.idProduct,
                bus=getattr(dev, 'bus', None),
                address=getattr(dev, 'address', None),
                is_default=not printers,
            ))
        logger.debug("USB: %d of %d device(s) look like printers", len(printers), len(found))
        return printers

    def _usb_name(self, dev) -> str:
        # Reading string descriptors needs device permissions; fall back to the vendor table
        try:
            product = dev.product
        except (ValueError, NotImplementedError, usb.core.USBError):
            product = None
        if product:
            return str(product)
        vendor = KNOWN_VENDOR_IDS.get(dev.idVendor, 'USB')
        return f"{vendor} {dev.idVendor:04x}:{dev.idProduct:04x}"

    def _usb_class(self, dev) -> Optional[int]:
        if dev.bDeviceClass:
            return dev.bDeviceClass
        try:
            for cfg in dev:
                for intf in cfg:
                    if intf.bInterfaceClass == USB_CLASS_PRINTER:
                        return USB_CLASS_PRINTER
        except (usb.core.USBError, NotImplementedError):
            pass  # configuration unreadable without permissions
        return None

    def enumerate_spooler(self) -> List[PrinterDescriptor]:
        if self.capabilities.spooler == SPOOLER_WIN32:
            names, default = self._win32_queues()
        elif self.capabilities.spooler == SPOOLER_CUPS:
            names, default = self._cups_queues()
        else:
            return []

        preferred = self.printer_name or default
        return [
            PrinterDescriptor(
                transport=TRANSPORT_SPOOLER,
                name=name,
                is_default=(name == preferred),
            )
            for name in names
        ]

    def _cups_queues(self):
        try:
            result = subprocess.run(
                ['lpstat', '-p', '-d'],
                capture_output=True, text=True, timeout=self.command_timeout,
            )
        except FileNotFoundError:
            return [], None
        except subprocess.TimeoutExpired:
            raise DetectionError("lpstat timed out")

        names = []
        default = None
        for line in result.stdout.splitlines():
            line = line.strip()
            match = LPSTAT_PRINTER_RE.match(line)
            if match:
                names.append(match.group(1))
                continue
            match = LPSTAT_DEFAULT_RE.search(line)
            if match:
                default = match.group(1)
        if result.returncode != 0 and not names:
            # "lpstat: No destinations added." is not an error for us
            logger.debug("lpstat exited %s: %s", result.returncode, result.stderr.strip())
        return names, default

    def _win32_queues(self):
        if win32print is None:
            return [], None
        flags = win32print.PRINTER_ENUM_LOCAL | win32print.PRINTER_ENUM_CONNECTIONS
        try:
            printers = win32print.EnumPrinters(flags, None, 1)
        except win32print.error as e:
            raise DetectionError(f"EnumPrinters failed: {e}")
        names = [p[2] for p in printers]
        try:
            default = win32print.GetDefaultPrinter()
        except win32print.error:
            default = None
        return names, default
