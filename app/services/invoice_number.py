# app/services/invoice_number.py
"""Numérotation des factures.

Format français : FR-AAAA-NNNNNN (séquence annuelle continue).
Format standard : INV-AAAAMM-NNNN (séquence mensuelle).
"""
import logging
import re
from collections.abc import Mapping
from datetime import date
from typing import Iterable, Optional

from app.models.invoice import InvoiceRecord
from app.services.formatting import FR_MODE

logger = logging.getLogger(__name__)

_FR_PATTERN = re.compile(r"^FR-(\d{4})-(\d{6})$")
_STANDARD_PATTERN = re.compile(r"^INV-(\d{6})-(\d{4})$")


def prefix_for(mode: str) -> str:
    return "FR-" if mode == FR_MODE else "INV-"


def _number_of(invoice) -> Optional[str]:
    if isinstance(invoice, InvoiceRecord):
        return invoice.invoice_number
    if isinstance(invoice, Mapping):
        return invoice.get("invoiceNumber") or invoice.get("invoice_number")
    return invoice


def generate_number(invoice, mode: str, today: Optional[date] = None) -> str:
    """Numéro affiché sur la facture.

    En mode "fr", un numéro `INV-<année>-<seq>` est réécrit en
    `FR-<année courante>-<seq sur 6 chiffres>`. L'année du numéro d'origine
    n'est pas reprise. Sans numéro, `{préfixe}{année}-000001` est produit ;
    l'unicité reste à la charge de l'appelant.
    """
    year = (today or date.today()).year
    invoice_number = _number_of(invoice)
    if invoice_number:
        if mode == FR_MODE and invoice_number.startswith("INV-"):
            parts = invoice_number.split("-")
            if len(parts) >= 3 and parts[2].isdigit() and len(parts[2]) <= 6:
                return f"FR-{year}-{parts[2].zfill(6)}"
            logger.warning(f"Numéro non convertible, conservé tel quel : {invoice_number}")
        return invoice_number
    return f"{prefix_for(mode)}{year}-000001"


def next_sequence_number(existing_numbers: Iterable[str], mode: str, today: Optional[date] = None) -> str:
    """Prochain numéro libre d'après les numéros déjà émis."""
    today = today or date.today()
    if mode == FR_MODE:
        period, pattern, width = f"{today.year}", _FR_PATTERN, 6
    else:
        period, pattern, width = f"{today.year}{today.month:02d}", _STANDARD_PATTERN, 4

    highest = 0
    for number in existing_numbers:
        match = pattern.match(number or "")
        if match and match.group(1) == period:
            highest = max(highest, int(match.group(2)))

    return f"{prefix_for(mode)}{period}-{highest + 1:0{width}d}"


def is_valid_number(invoice_number: Optional[str], mode: str) -> bool:
    if not invoice_number or not isinstance(invoice_number, str):
        return False
    pattern = _FR_PATTERN if mode == FR_MODE else _STANDARD_PATTERN
    return pattern.match(invoice_number) is not None
