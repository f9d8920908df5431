"""
Unit tests for totals calculation and price parsing.
"""

from decimal import Decimal

from fieldops.models import LineItemRecord
from fieldops.services.totals_service import compute_totals
from fieldops.utils.number_format import parse_unit_price, price_to_text


class TestComputeTotals:
    """Tests for compute_totals."""

    def test_discount_reduces_subtotal(self):
        """A discount keeps its negative sign in the subtotal."""
        totals = compute_totals([{'unit_price': 100}, {'unit_price': -20}], 10)

        assert totals.subtotal == Decimal('80.00')
        assert totals.tax_amount == Decimal('8.00')
        assert totals.total == Decimal('88.00')

    def test_accepts_camel_case_and_records(self):
        """Mappings with unitPrice and record objects are both priced."""
        items = [
            {'unitPrice': '50'},
            LineItemRecord(id=None, name='Labor', unit_price=Decimal('25.50')),
        ]
        totals = compute_totals(items)

        assert totals.subtotal == Decimal('75.50')
        assert totals.total == Decimal('75.50')

    def test_unparseable_prices_count_as_zero(self):
        totals = compute_totals([{'unit_price': 'abc'}, {'unit_price': None}, {'unit_price': 40}], 0)
        assert totals.subtotal == Decimal('40.00')

    def test_empty_list(self):
        totals = compute_totals([], 7)
        assert totals.subtotal == Decimal('0')
        assert totals.total == Decimal('0')

    def test_rounds_to_cents(self):
        """Tax is computed on the exact subtotal, each figure rounded to cents."""
        totals = compute_totals([{'unit_price': '33.33'}], 7.5)

        assert totals.tax_amount == Decimal('2.50')
        assert totals.total == Decimal('35.83')

    def test_out_of_range_prices_count_as_zero(self):
        """Prices too large to price in cents never raise."""
        totals = compute_totals([{'unit_price': '9' * 29}, {'unit_price': '1e30'}, {'unit_price': 40}], 10)

        assert totals.subtotal == Decimal('40.00')
        assert totals.total == Decimal('44.00')

    def test_large_subtotal_with_large_rate(self):
        totals = compute_totals([{'unit_price': '999999999999999'}], '999999999999999')

        assert totals.subtotal == Decimal('999999999999999.00')
        assert totals.tax_amount > totals.subtotal

    def test_to_dict_serializes_strings(self):
        totals = compute_totals([{'unit_price': 100}, {'unit_price': -20}], 10)
        assert totals.to_dict() == {'subtotal': '80.00', 'tax_amount': '8.00', 'total': '88.00'}


class TestParseUnitPrice:
    """Tests for tolerant price parsing."""

    def test_plain_numbers(self):
        assert parse_unit_price('125.50') == Decimal('125.50')
        assert parse_unit_price(' -20 ') == Decimal('-20')
        assert parse_unit_price(42) == Decimal('42')

    def test_trailing_text_is_dropped(self):
        assert parse_unit_price('12.5 USD') == Decimal('12.5')

    def test_garbage_is_zero(self):
        assert parse_unit_price('abc') == Decimal('0')
        assert parse_unit_price('') == Decimal('0')
        assert parse_unit_price(None) == Decimal('0')
        assert parse_unit_price(True) == Decimal('0')

    def test_non_finite_is_zero(self):
        assert parse_unit_price(float('inf')) == Decimal('0')
        assert parse_unit_price(float('nan')) == Decimal('0')
        assert parse_unit_price('Infinity') == Decimal('0')

    def test_price_to_text(self):
        assert price_to_text(Decimal('100.00')) == '100'
        assert price_to_text(Decimal('125.50')) == '125.5'
        assert price_to_text(-20) == '-20'
        assert price_to_text('1e3') == '1000'

    def test_out_of_range_is_zero(self):
        assert parse_unit_price('1e30') == Decimal('0')
        assert parse_unit_price(Decimal('-1E+16')) == Decimal('0')
        assert parse_unit_price('999999999999999.99') == Decimal('999999999999999.99')
