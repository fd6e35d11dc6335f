from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

DISPLAY_CURRENCY = "BRL"
# pt-BR puts a non-breaking space between symbol and amount
NBSP = "\u00a0"

CURRENCY_SYMBOLS = {
    "BRL": "R$",
    "USD": "US$",
    "EUR": "€",
    "GBP": "£",
}


def to_decimal(value) -> Decimal | None:
    """Decimal for a money-like value; None when it is missing, unparsable or not finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    return number if number.is_finite() else None


def parse_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    # fromisoformat before 3.11 choked on the trailing Z the aggregator sends
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _group_ptbr(amount: Decimal) -> str:
    # 1,234.56 -> 1.234,56
    text = f"{amount:,.2f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_currency(amount, currency_code: str | None = None) -> str:
    """pt-BR money string. Missing currency displays as BRL."""
    value = to_decimal(amount)
    if value is None:
        return "N/A"
    code = (currency_code or DISPLAY_CURRENCY).upper()
    symbol = CURRENCY_SYMBOLS.get(code, code)
    rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{symbol}{NBSP}{_group_ptbr(abs(rounded))}"


def format_date(value) -> str:
    parsed = parse_datetime(value)
    if parsed is None:
        return "N/A"
    return parsed.strftime("%d/%m/%Y")


def format_percentage(value) -> str:
    number = to_decimal(value)
    if number is None:
        return "N/A"
    return f"{number.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}%"


def humanize_label(value: str | None, fallback: str = "") -> str:
    if not value:
        return fallback
    return value.replace("_", " ")
