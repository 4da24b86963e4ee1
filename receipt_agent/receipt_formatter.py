# Receipt Formatter - renders an order into ESC/POS bytes, plain text and HTML
# Pure functions of the order; no device or network I/O happens here

import html
import logging
import textwrap
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Larger amounts overflow quantize() at the default precision
MAX_AMOUNT_DIGITS = 15


@dataclass(frozen=True)
class OrderPayload:
    """Everything needed to render one receipt"""
    id: Optional[str] = None
    customer_name: str = ""
    description: str = ""
    notes: str = ""
    address: str = ""
    total: Decimal = Decimal("0")
    payment_method: str = ""
    created_at: Optional[datetime] = None

    # Accepted spellings for each field; the dashboard stores Portuguese column names
    FIELD_ALIASES = {
        'id': ('id', 'orderId', 'order_id'),
        'customer_name': ('customer_name', 'customer', 'nome_cliente'),
        'description': ('description', 'pedido', 'items_text'),
        'notes': ('notes', 'observacoes', 'observações'),
        'address': ('address', 'endereco', 'endereço'),
        'total': ('total', 'valor', 'amount'),
        'payment_method': ('payment_method', 'paymentMethod', 'tipo_pagamento'),
        'created_at': ('created_at', 'createdAt', 'timestamp'),
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderPayload":
        """Build from a loosely-shaped order record"""
        data = data or {}

        def pick(field_name):
            for key in cls.FIELD_ALIASES[field_name]:
                if data.get(key) not in (None, ""):
                    return data[key]
            return None

        order_id = pick('id')
        return cls(
            id=str(order_id) if order_id is not None else None,
            customer_name=str(pick('customer_name') or ""),
            description=str(pick('description') or ""),
            notes=str(pick('notes') or ""),
            address=str(pick('address') or ""),
            total=to_decimal(pick('total')),
            payment_method=str(pick('payment_method') or ""),
            created_at=_parse_timestamp(pick('created_at')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_name': self.customer_name,
            'description': self.description,
            'notes': self.notes,
            'address': self.address,
            'total': str(self.total),
            'payment_method': self.payment_method,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


def to_decimal(value: Any) -> Decimal:
    """Coerce an amount to Decimal; missing, unparseable or non-finite amounts are zero"""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            # str() first so 35.9 becomes Decimal('35.9'), not its binary expansion
            amount = Decimal(str(value).strip().replace(',', '.'))
        except (InvalidOperation, ValueError):
            logger.debug("Unparseable amount %r, using zero", value)
            return Decimal("0")
    if not amount.is_finite() or amount.adjusted() >= MAX_AMOUNT_DIGITS:
        logger.debug("Out-of-range amount %r, using zero", value)
        return Decimal("0")
    return amount


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # epoch milliseconds, as produced by JavaScript clients
        return datetime.fromtimestamp(value / 1000)
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


# ESC/POS command set (Epson TM series)
ESC = b'\x1b'
GS = b'\x1d'
LF = b'\x0a'

CMD_RESET = ESC + b'@'
CMD_BOLD_ON = ESC + b'E\x01'
CMD_BOLD_OFF = ESC + b'E\x00'
CMD_ALIGN_CENTER = ESC + b'a\x01'
CMD_ALIGN_LEFT = ESC + b'a\x00'
CMD_FEED_3 = ESC + b'd\x03'
CMD_PARTIAL_CUT = ESC + b'i'
CMD_CUT = CMD_FEED_3 + CMD_PARTIAL_CUT

# Longest prefixes first so ESC d n is not mistaken for something shorter
KNOWN_SEQUENCES: List[Tuple[bytes, str]] = [
    (CMD_BOLD_ON, 'bold_on'),
    (CMD_BOLD_OFF, 'bold_off'),
    (CMD_ALIGN_CENTER, 'align_center'),
    (CMD_ALIGN_LEFT, 'align_left'),
    (ESC + b'a\x02', 'align_right'),
    (CMD_RESET, 'reset'),
    (CMD_PARTIAL_CUT, 'cut'),
    (GS + b'V', 'cut'),
]


def scan_commands(stream: bytes) -> List[str]:
    """Name every control sequence in a byte stream, in order"""
    names = []
    i = 0
    while i < len(stream):
        if stream[i] in (0x1B, 0x1D):
            if stream[i:i + 2] == ESC + b'd' and i + 2 < len(stream):
                names.append('feed')
                i += 3
                continue
            for seq, name in KNOWN_SEQUENCES:
                if stream.startswith(seq, i):
                    names.append(name)
                    i += len(seq)
                    break
            else:
                cmd_hex = ' '.join(f'{b:02X}' for b in stream[i:i + 2])
                names.append(f'unknown:{cmd_hex}')
                i += 2
            continue
        i += 1
    return names


def is_balanced(stream: bytes) -> bool:
    """True when every bold/alignment toggle is undone before the final cut"""
    bold = False
    aligned = False
    commands = scan_commands(stream)
    if not commands or commands[-1] != 'cut':
        return False
    for name in commands:
        if name == 'bold_on':
            bold = True
        elif name == 'bold_off':
            bold = False
        elif name in ('align_center', 'align_right'):
            aligned = True
        elif name in ('align_left', 'reset'):
            aligned = False
            if name == 'reset':
                bold = False
        elif name == 'cut' and (bold or aligned):
            return False
    return True


class ReceiptFormatter:
    """Renders OrderPayload values for thermal hardware, OS spoolers and browsers"""

    LINE_WIDTH = 32  # 58mm paper

    def __init__(self, shop_name: str = 'DELIVERY', currency_symbol: str = 'R$',
                 decimal_separator: str = '.', encoding: str = 'utf-8',
                 footer: Tuple[str, ...] = ('Thank you for your order!',)):
        self.shop_name = shop_name
        self.currency_symbol = currency_symbol
        self.decimal_separator = decimal_separator
        self.encoding = encoding
        self.footer = footer

    def format_money(self, value: Any) -> str:
        """Two-decimal amount with the configured symbol, e.g. 'R$ 35.90'"""
        amount = to_decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        text = f"{amount:.2f}"
        if self.decimal_separator != '.':
            text = text.replace('.', self.decimal_separator)
        return f"{self.currency_symbol} {text}".strip()

    def _separator(self, char: str = '-') -> str:
        return char * self.LINE_WIDTH

    def _wrap(self, text: str) -> List[str]:
        """Break text to the paper width, keeping its own line breaks"""
        lines = []
        for raw in (text or '').splitlines() or ['']:
            lines.extend(textwrap.wrap(raw, width=self.LINE_WIDTH, break_long_words=True) or [''])
        return lines

    def _date_text(self, order: OrderPayload) -> Optional[str]:
        if order.created_at is None:
            return None
        return order.created_at.strftime('%d/%m/%Y %H:%M')

    def _metadata_lines(self, order: OrderPayload) -> List[str]:
        lines = []
        date_text = self._date_text(order)
        if date_text:
            lines.append(f"Date: {date_text}")
        lines.append(f"Order: #{order.id or 'N/A'}")
        lines.append(f"Customer: {order.customer_name or 'N/A'}")
        return lines

    def render_control_stream(self, order: OrderPayload) -> bytes:
        """ESC/POS byte stream for a thermal printer"""
        out = bytearray()

        def text(line: str = ''):
            out.extend(line.encode(self.encoding, errors='replace'))
            out.extend(LF)

        out.extend(CMD_RESET)

        # header
        out.extend(CMD_ALIGN_CENTER + CMD_BOLD_ON)
        text(self._separator('='))
        text(self.shop_name)
        text(self._separator('='))
        out.extend(CMD_BOLD_OFF + CMD_ALIGN_LEFT)

        for line in self._metadata_lines(order):
            for part in self._wrap(line):
                text(part)
        text(self._separator())

        out.extend(CMD_BOLD_ON)
        text('ORDER:')
        out.extend(CMD_BOLD_OFF)
        for line in self._wrap(order.description or 'No details'):
            text(line)

        if order.notes:
            text()
            out.extend(CMD_BOLD_ON)
            text('NOTES:')
            out.extend(CMD_BOLD_OFF)
            for line in self._wrap(order.notes):
                text(line)
        text(self._separator())

        if order.address:
            out.extend(CMD_BOLD_ON)
            text('ADDRESS:')
            out.extend(CMD_BOLD_OFF)
            for line in self._wrap(order.address):
                text(line)
            text(self._separator())

        out.extend(CMD_ALIGN_CENTER + CMD_BOLD_ON)
        text(f"TOTAL: {self.format_money(order.total)}")
        text(f"PAYMENT: {order.payment_method or 'N/A'}")
        out.extend(CMD_BOLD_OFF + CMD_ALIGN_LEFT)

        text(self._separator('='))
        out.extend(CMD_ALIGN_CENTER)
        for line in self.footer:
            text(line)
        out.extend(CMD_ALIGN_LEFT)
        text(self._separator('='))

        out.extend(CMD_CUT)
        return bytes(out)

    def render_text_stream(self, text: str) -> bytes:
        """Wrap already-rendered receipt text in reset/cut for the hardware path"""
        body = (text or '').rstrip('\n') + '\n'
        return (CMD_RESET + CMD_ALIGN_LEFT
                + body.encode(self.encoding, errors='replace')
                + CMD_CUT)

    def render_text(self, order: OrderPayload) -> str:
        """Plain-text receipt for OS print queues"""
        lines = [
            self._separator('='),
            self.shop_name.center(self.LINE_WIDTH).rstrip(),
            self._separator('='),
        ]
        for line in self._metadata_lines(order):
            lines.extend(self._wrap(line))
        lines.append(self._separator())
        lines.append('ORDER:')
        lines.extend(self._wrap(order.description or 'No details'))
        if order.notes:
            lines.append('')
            lines.append('NOTES:')
            lines.extend(self._wrap(order.notes))
        lines.append(self._separator())
        if order.address:
            lines.append('ADDRESS:')
            lines.extend(self._wrap(order.address))
            lines.append(self._separator())
        lines.append(f"TOTAL: {self.format_money(order.total)}")
        lines.append(f"PAYMENT: {order.payment_method or 'N/A'}")
        lines.append(self._separator('='))
        lines.extend(line.center(self.LINE_WIDTH).rstrip() for line in self.footer)
        lines.append(self._separator('='))
        return '\n'.join(lines) + '\n'

    def render_markup(self, order: OrderPayload) -> str:
        """Self-printing HTML document for the browser path"""
        esc = html.escape
        parts = [
            '<!DOCTYPE html>',
            '<html>',
            '<head>',
            '<meta charset="utf-8">',
            f'<title>Receipt - Order #{esc(order.id or "N/A")}</title>',
            '<style>',
            '@media print { body { margin: 0; padding: 10px; } }',
            'body { width: 80mm; font-family: monospace; font-size: 12px; }',
            '.center { text-align: center; }',
            '.bold { font-weight: bold; }',
            '.line { border-bottom: 1px dashed #000; margin: 5px 0; }',
            '</style>',
            '</head>',
            '<body onload="window.print()">',
            f'<div class="center bold">{esc(self.shop_name)}</div>',
            '<div class="line"></div>',
        ]
        parts.extend(f'{esc(line)}<br>' for line in self._metadata_lines(order))
        parts.append('<div class="line"></div>')
        parts.append('<div class="bold">ORDER:</div>')
        parts.append(f'{esc(order.description or "No details")}<br>')
        if order.notes:
            parts.append('<div class="bold">NOTES:</div>')
            parts.append(f'{esc(order.notes)}<br>')
        parts.append('<div class="line"></div>')
        if order.address:
            parts.append('<div class="bold">ADDRESS:</div>')
            parts.append(f'{esc(order.address)}<br>')
            parts.append('<div class="line"></div>')
        parts.append('<div class="center bold">')
        parts.append(f'TOTAL: {esc(self.format_money(order.total))}<br>')
        parts.append(f'PAYMENT: {esc(order.payment_method or "N/A")}')
        parts.append('</div>')
        parts.append('<div class="line"></div>')
        parts.append('<div class="center">')
        parts.extend(f'{esc(line)}<br>' for line in self.footer)
        parts.append('</div>')
        parts.append('</body>')
        parts.append('</html>')
        return '\n'.join(parts) + '\n'

    def render_text_markup(self, text: str) -> str:
        """HTML wrapper for pre-rendered text, used when only text is available"""
        return (
            '<!DOCTYPE html>\n<html>\n<head>\n<meta charset="utf-8">\n'
            '<title>Receipt</title>\n</head>\n'
            '<body onload="window.print()">\n'
            f'<pre style="font-family: monospace; font-size: 12px;">{html.escape(text or "")}</pre>\n'
            '</body>\n</html>\n'
        )
