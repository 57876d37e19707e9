# app/services/formatting.py
"""Formatage des montants, pourcentages et dates.

Ces fonctions sont partagées par le PDF et l'aperçu HTML : pour une même
entrée, les deux rendus doivent produire exactement les mêmes caractères.
En mode "fr", les espaces insécables produits par les conventions françaises
sont remplacés par des espaces simples.
"""
from decimal import Decimal, ROUND_HALF_UP

from app.models.invoice import to_number, to_date

FR_MODE = "fr"

_FR_SYMBOLS = {"EUR": "€", "USD": "$US", "GBP": "£GB"}
_DEFAULT_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}

_FR_MONTHS = (
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
)

_CENT = Decimal("0.01")
_TENTH = Decimal("0.1")


def _quantize(value: Decimal, q: Decimal) -> Decimal:
    return value.quantize(q, rounding=ROUND_HALF_UP)


def _fr_number(value: Decimal, q: Decimal) -> str:
    """1234.5 -> '1 234,50' (groupes de milliers séparés par une espace simple)."""
    rounded = _quantize(value, q)
    digits = -q.as_tuple().exponent
    sign = "-" if rounded < 0 else ""
    body = f"{abs(rounded):,.{digits}f}".replace(",", " ").replace(".", ",")
    return sign + body


def plain_number(value) -> str:
    """Représentation courte d'un nombre : 2 -> '2', 1.50 -> '1.5'."""
    number = to_number(value)
    if number == number.to_integral_value():
        return format(number.to_integral_value(), "f")
    return format(number.normalize(), "f")


def format_currency(amount, currency: str = "EUR", mode: str = FR_MODE) -> str:
    code = (currency or "EUR").upper()
    number = to_number(amount)
    if mode == FR_MODE:
        symbol = _FR_SYMBOLS.get(code, code)
        return f"{_fr_number(number, _CENT)} {symbol}"
    rendered = f"{_quantize(number, _CENT):.2f}"
    if code in _DEFAULT_SYMBOLS:
        return f"{_DEFAULT_SYMBOLS[code]}{rendered}"
    return f"{code} {rendered}"


def format_percentage(value, mode: str = FR_MODE) -> str:
    rate = to_number(value)
    if mode == FR_MODE:
        return f"{_fr_number(rate, _TENTH)} %"
    return f"{plain_number(rate)} %"


def format_date(value, mode: str = FR_MODE) -> str:
    """Date longue en français ('1 octobre 2026'), ISO sinon. '' si absente."""
    day = to_date(value)
    if day is None:
        return ""
    if mode == FR_MODE:
        return f"{day.day} {_FR_MONTHS[day.month - 1]} {day.year}"
    return day.isoformat()
