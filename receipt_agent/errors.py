# Errors - failure taxonomy for the receipt print agent
#
# PrintAgentError
# ├── DetectionError   device enumeration failed (permission, API unavailable)
# ├── ConnectError     open/configure/claim failed, or device busy
# ├── TransferError    write/flush failed or timed out
# ├── DispatchError    every fallback path exhausted
# └── QueueError       remote print queue problems
#     └── JobNotFoundError

from typing import Optional, Dict, Any


class PrintAgentError(Exception):
    """Base class for all print agent errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class DetectionError(PrintAgentError):
    """Enumerating candidate devices failed"""


class ConnectError(PrintAgentError):
    """Opening, configuring or claiming a device failed"""

    def __init__(self, message: str, busy: bool = False,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.busy = busy


class TransferError(PrintAgentError):
    """Writing bytes to a device (or handing them to the OS) failed"""

    def __init__(self, message: str, timed_out: bool = False,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.timed_out = timed_out


class DispatchError(PrintAgentError):
    """All fallback paths were exhausted"""

    DEFAULT_HINT = "Use the manual browser print function"

    def __init__(self, cause: Optional[Exception] = None, hint: str = None):
        self.cause = cause
        self.hint = hint or self.DEFAULT_HINT
        message = "All print methods failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, {'hint': self.hint})


class QueueError(PrintAgentError):
    """Remote print queue failure"""


class JobNotFoundError(QueueError):
    """Print job does not exist or has already expired"""

    def __init__(self, job_id):
        super().__init__(f"Print job {job_id} not found")
        self.job_id = job_id
