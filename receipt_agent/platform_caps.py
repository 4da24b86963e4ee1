# Platform Capabilities - decided once at startup, consumed by detector and dispatcher

import logging
import shutil
import sys
import webbrowser
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

# USB support - optional
try:
    import usb.core
    USB_AVAILABLE = True
except ImportError:
    USB_AVAILABLE = False

# Windows spooler - optional (pywin32)
WIN32_AVAILABLE = False
if sys.platform == 'win32':
    try:
        import win32print  # noqa: F401
        WIN32_AVAILABLE = True
    except ImportError:
        pass

logger = logging.getLogger(__name__)

SPOOLER_CUPS = 'cups'
SPOOLER_WIN32 = 'win32'


@dataclass(frozen=True)
class Capabilities:
    """What this host can print through"""
    platform: str
    usb: bool
    spooler: Optional[str]
    browser: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _usb_backend_available() -> bool:
    if not USB_AVAILABLE:
        return False
    try:
        usb.core.find(find_all=True)
        return True
    except usb.core.NoBackendError:
        logger.info("pyusb installed but no libusb backend found")
        return False
    except usb.core.USBError as e:
        logger.warning("USB probe failed: %s", e)
        return False


def _spooler_kind() -> Optional[str]:
    if WIN32_AVAILABLE:
        return SPOOLER_WIN32
    if sys.platform != 'win32' and shutil.which('lp'):
        return SPOOLER_CUPS
    return None


def _browser_available() -> bool:
    try:
        webbrowser.get()
        return True
    except webbrowser.Error:
        return False


def probe_capabilities(config: Dict[str, Any] = None) -> Capabilities:
    """Probe the host once; callers keep the result for the process lifetime"""
    config = config or {}
    caps = Capabilities(
        platform=sys.platform,
        usb=bool(config.get('usb_enabled', True)) and _usb_backend_available(),
        spooler=_spooler_kind(),
        browser=bool(config.get('browser_fallback', True)) and _browser_available(),
    )
    logger.info(
        "Capabilities: platform=%s usb=%s spooler=%s browser=%s",
        caps.platform, caps.usb, caps.spooler, caps.browser,
    )
    return caps
