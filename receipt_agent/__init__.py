# Receipt Print Agent - local receipt printing with hardware/spooler/browser fallback

__version__ = '1.0.0'

from .errors import (  # noqa: F401
    PrintAgentError,
    DetectionError,
    ConnectError,
    TransferError,
    DispatchError,
    QueueError,
    JobNotFoundError,
)
from .receipt_formatter import OrderPayload, ReceiptFormatter  # noqa: F401
from .dispatcher import PrintDispatcher, PrintResult  # noqa: F401
from .job_store import JobStore, PrintJob  # noqa: F401
