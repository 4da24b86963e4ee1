# Tests for the receipt formatter

from datetime import datetime
from decimal import Decimal

import pytest
from receipt_agent.receipt_formatter import (
    CMD_ALIGN_CENTER,
    CMD_ALIGN_LEFT,
    CMD_BOLD_OFF,
    CMD_BOLD_ON,
    CMD_CUT,
    CMD_RESET,
    OrderPayload,
    ReceiptFormatter,
    is_balanced,
    scan_commands,
    to_decimal,
)


def make_order(**overrides):
    fields = {
        'id': '42',
        'customer_name': 'Maria',
        'description': '1x X-Burger\n1x Coke',
        'total': Decimal('35.9'),
        'payment_method': 'PIX',
    }
    fields.update(overrides)
    return OrderPayload(**fields)


class TestOrderPayload:
    """Loose order records into OrderPayload"""

    def test_from_dict_english_keys(self):
        order = OrderPayload.from_dict({
            'id': 7, 'customer_name': 'Ana', 'description': 'Pizza',
            'total': '49.5', 'payment_method': 'Card',
        })

        assert order.id == '7'
        assert order.customer_name == 'Ana'
        assert order.total == Decimal('49.5')

    def test_from_dict_portuguese_keys(self):
        order = OrderPayload.from_dict({
            'id': 3, 'nome_cliente': 'João', 'pedido': '2x Pastel',
            'observacoes': 'sem cebola', 'endereco': 'Rua A, 10',
            'valor': '12,50', 'tipo_pagamento': 'Dinheiro',
        })

        assert order.customer_name == 'João'
        assert order.description == '2x Pastel'
        assert order.notes == 'sem cebola'
        assert order.address == 'Rua A, 10'
        assert order.total == Decimal('12.50')
        assert order.payment_method == 'Dinheiro'

    def test_from_dict_timestamp_formats(self):
        iso = OrderPayload.from_dict({'created_at': '2024-05-01T12:30:00Z'})
        millis = OrderPayload.from_dict({'createdAt': 1714566600000})

        assert iso.created_at.year == 2024
        assert isinstance(millis.created_at, datetime)

    def test_empty_record(self):
        order = OrderPayload.from_dict(None)

        assert order.id is None
        assert order.total == Decimal('0')

    @pytest.mark.parametrize('value', [
        None, '', 'abc', True, '1e30', 'Infinity', '-inf', 'NaN', float('inf'), Decimal('sNaN'),
    ])
    def test_bad_amounts_are_zero(self, value):
        assert to_decimal(value) == Decimal('0')


class TestMoney:
    """Two-decimal totals"""

    def setup_method(self):
        self.formatter = ReceiptFormatter()

    @pytest.mark.parametrize('value,expected', [
        (35.9, 'R$ 35.90'),
        ('35.999', 'R$ 36.00'),
        (Decimal('7'), 'R$ 7.00'),
        (None, 'R$ 0.00'),
        ('0.005', 'R$ 0.01'),
    ])
    def test_two_decimals(self, value, expected):
        assert self.formatter.format_money(value) == expected

    @pytest.mark.parametrize('value', ['1e30', 'NaN', float('inf')])
    def test_out_of_range_totals_print_as_zero(self, value):
        order = OrderPayload.from_dict({'total': value})

        assert self.formatter.format_money(order.total) == 'R$ 0.00'

    def test_comma_separator(self):
        formatter = ReceiptFormatter(decimal_separator=',')

        assert formatter.format_money(35.9) == 'R$ 35,90'


class TestMarkup:
    """HTML receipt for the browser path"""

    def setup_method(self):
        self.formatter = ReceiptFormatter()

    def test_notes_section_omitted_when_empty(self):
        markup = self.formatter.render_markup(make_order(notes=''))

        assert 'NOTES:' not in markup

    def test_notes_rendered_verbatim(self):
        markup = self.formatter.render_markup(make_order(notes='no onions please'))

        assert 'NOTES:' in markup
        assert 'no onions please' in markup

    def test_address_section_conditional(self):
        without = self.formatter.render_markup(make_order())
        with_address = self.formatter.render_markup(make_order(address='Rua das Flores, 12'))

        assert 'ADDRESS:' not in without
        assert 'Rua das Flores, 12' in with_address

    def test_html_is_escaped(self):
        markup = self.formatter.render_markup(make_order(customer_name='<script>x</script>'))

        assert '<script>x' not in markup
        assert '&lt;script&gt;' in markup

    def test_prints_itself(self):
        markup = self.formatter.render_markup(make_order())

        assert 'window.print()' in markup
        assert '@media print' in markup
        assert 'R$ 35.90' in markup


class TestControlStream:
    """ESC/POS bytes for thermal hardware"""

    def setup_method(self):
        self.formatter = ReceiptFormatter()

    def test_starts_with_reset_ends_with_cut(self):
        stream = self.formatter.render_control_stream(make_order())

        assert stream.startswith(CMD_RESET)
        assert stream.endswith(CMD_CUT)

    @pytest.mark.parametrize('notes,address', [
        ('', ''), ('extra napkins', ''), ('', 'Av. Brasil 100'), ('a', 'b'),
    ])
    def test_bold_toggles_balanced(self, notes, address):
        stream = self.formatter.render_control_stream(make_order(notes=notes, address=address))

        assert stream.count(CMD_BOLD_ON) == stream.count(CMD_BOLD_OFF)
        assert is_balanced(stream)

    def test_sections_conditional(self):
        stream = self.formatter.render_control_stream(make_order())

        assert b'NOTES:' not in stream
        assert b'ADDRESS:' not in stream
        assert b'TOTAL: R$ 35.90' in stream

    def test_text_stream_wraps_text(self):
        stream = self.formatter.render_text_stream('hello\n')
        commands = scan_commands(stream)

        assert commands[0] == 'reset'
        assert commands[-1] == 'cut'
        assert b'hello' in stream


class TestScanCommands:
    """Control sequence scanner"""

    def test_names_sequences(self):
        stream = CMD_RESET + CMD_BOLD_ON + b'hi' + CMD_BOLD_OFF + CMD_CUT

        assert scan_commands(stream) == ['reset', 'bold_on', 'bold_off', 'feed', 'cut']

    def test_unknown_sequence(self):
        assert scan_commands(b'\x1bz') == ['unknown:1B 7A']

    def test_unbalanced_bold(self):
        stream = CMD_RESET + CMD_BOLD_ON + b'loud' + CMD_CUT

        assert not is_balanced(stream)

    def test_missing_cut(self):
        assert not is_balanced(CMD_RESET + b'text')


class TestPlainText:
    """Spooler text receipt"""

    def test_text_layout(self):
        formatter = ReceiptFormatter(shop_name='JYZE DELIVERY')
        text = formatter.render_text(make_order(notes='well done'))

        assert 'JYZE DELIVERY' in text
        assert 'Order: #42' in text
        assert 'NOTES:\nwell done' in text
        assert 'TOTAL: R$ 35.90' in text
        assert 'ADDRESS:' not in text

    def test_long_fields_wrapped_to_paper_width(self):
        formatter = ReceiptFormatter()
        order = make_order(
            customer_name='Maria Aparecida dos Santos Oliveira',
            description='2x Pizza grande meia calabresa meia portuguesa com borda recheada\n1x Coke',
            notes='Entregar no portao dos fundos, tocar a campainha duas vezes',
            address='Rua' + 'X' * 50 + ' 100',
        )
        text = formatter.render_text(order)

        assert all(len(line) <= formatter.LINE_WIDTH for line in text.splitlines())
        assert '1x Coke' in text.splitlines()
        assert 'X' * 29 in text

        stream = formatter.render_control_stream(order)
        body = stream.decode('utf-8', errors='ignore')
        for command in (CMD_CUT, CMD_BOLD_ON, CMD_BOLD_OFF, CMD_ALIGN_CENTER, CMD_ALIGN_LEFT,
                        CMD_RESET):
            body = body.replace(command.decode('latin-1'), '')
        assert all(len(line) <= formatter.LINE_WIDTH for line in body.splitlines())
