from datetime import date, datetime
from decimal import Decimal

import pytest

from pgdesk.utils.csv_utils import rows_to_csv
from pgdesk.utils.formatting import format_currency, format_date


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("0"), "₹0"),
        (Decimal("999"), "₹999"),
        (Decimal("12345"), "₹12,345"),
        (Decimal("1234567.5"), "₹12,34,568"),
        (Decimal("-8000"), "-₹8,000"),
        (None, "₹0"),
    ],
)
def test_format_currency_uses_indian_grouping(amount, expected):
    assert format_currency(amount) == expected


def test_format_currency_with_decimals_and_symbol():
    assert format_currency("1234.5", symbol="Rs. ", decimals=True) == "Rs. 1,234.50"
    assert format_currency(Decimal("-0.005"), decimals=True) == "-₹0.01"


def test_format_date():
    assert format_date(date(2024, 1, 5)) == "5 Jan 2024"
    assert format_date(datetime(2024, 12, 31, 22, 0)) == "31 Dec 2024"
    assert format_date("2024-03-09T10:00:00") == "9 Mar 2024"
    assert format_date(None) == ""


def test_rows_to_csv_quotes_commas():
    content = rows_to_csv(["Tenant", "Note"], [["Asha Rao", "paint, cleaning"]])
    assert content.splitlines() == ["Tenant,Note", 'Asha Rao,"paint, cleaning"']
