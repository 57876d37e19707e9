# app/services/amounts.py
"""Normalisation des montants et des enregistrements bruts.

Les enregistrements arrivent du frontend ou de la base sous plusieurs formes
(`total` ou `totalAmount`, `items` ou `InvoiceItems`, `tvaRate` ou `taxRate`,
champs vendeur à plat ou dans `Company`). Tout est ramené ici à un schéma
unique : le reste du moteur ne consomme que les modèles de app.models.invoice.
"""
import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from app.models.invoice import (
    ZERO,
    BankInfo,
    ClientInfo,
    InvoiceRecord,
    LineItem,
    SellerInfo,
    TotalsSummary,
    TVAGroup,
    to_flag,
    to_number,
)
from app.services.formatting import FR_MODE, format_currency

logger = logging.getLogger(__name__)


def _as_mapping(record) -> Mapping:
    if record is None:
        return {}
    if isinstance(record, BaseModel):
        return record.model_dump(by_alias=True)
    if isinstance(record, Mapping):
        return record
    logger.warning(f"Enregistrement ignoré, type inattendu : {type(record).__name__}")
    return {}


def _positive(value) -> Optional[Decimal]:
    if value is None:
        return None
    number = to_number(value, default=None)
    if number is not None and number > 0:
        return number
    return None


def _to_line_item(item) -> Optional[LineItem]:
    if isinstance(item, LineItem):
        return item
    if not isinstance(item, Mapping):
        logger.warning(f"Ligne de facture ignorée : {item!r}")
        return None
    try:
        return LineItem.model_validate(dict(item))
    except ValidationError as e:
        logger.warning(f"Ligne de facture illisible ignorée : {e}")
        return None


def line_items(items: Iterable) -> List[LineItem]:
    """Lignes canoniques ; une ligne illisible est écartée, jamais fatale."""
    if not items:
        return []
    return [li for li in (_to_line_item(item) for item in items) if li is not None]


def total_from_items(items: Iterable) -> Decimal:
    subtotal = ZERO
    tax = ZERO
    for item in line_items(items):
        subtotal += item.line_total
        tax += item.line_tax
    return subtotal + tax


def extract_total(invoice) -> Decimal:
    """Montant TTC canonique d'une facture.

    Ordre de priorité, la première valeur strictement positive gagne :
    `total`, `totalAmount`, `subtotal + taxAmount`, calcul sur `items`
    puis sur `InvoiceItems`. Retourne 0 sinon.
    """
    data = _as_mapping(invoice)

    for key in ("total", "totalAmount"):
        amount = _positive(data.get(key))
        if amount is not None:
            return amount

    amount = to_number(data.get("subtotal")) + to_number(data.get("taxAmount"))
    if amount > 0:
        return amount

    for key in ("items", "InvoiceItems"):
        items = data.get(key)
        if isinstance(items, list) and items:
            amount = total_from_items(items)
            if amount > 0:
                return amount

    logger.warning(
        "Aucun montant total exploitable, 0 retenu",
        extra={"extra": {"invoice_number": data.get("invoiceNumber")}},
    )
    return ZERO


def normalize(invoice) -> dict:
    """Copie superficielle où `total` et `totalAmount` valent le total canonique."""
    data = dict(_as_mapping(invoice))
    amount = extract_total(data)
    data["total"] = amount
    data["totalAmount"] = amount
    return data


def display_amount(invoice, currency: str = "EUR", mode: str = FR_MODE) -> str:
    return format_currency(extract_total(invoice), currency, mode)


def compute_totals(invoice: InvoiceRecord) -> TotalsSummary:
    """Sous-total, TVA par taux (ordre de première apparition) et total TTC."""
    if not invoice.items:
        total = invoice.total or ZERO
        tax = invoice.tax_amount or ZERO
        subtotal = invoice.subtotal if invoice.subtotal is not None else total - tax
        return TotalsSummary(subtotal=subtotal, total_tax=tax, grand_total=total, groups=[])

    subtotal = ZERO
    groups = {}
    for item in invoice.items:
        subtotal += item.line_total
        group = groups.setdefault(item.rate, TVAGroup(rate=item.rate))
        group.base += item.line_total
        group.amount += item.line_tax

    total_tax = sum((g.amount for g in groups.values()), ZERO)
    return TotalsSummary(
        subtotal=subtotal,
        total_tax=total_tax,
        grand_total=subtotal + total_tax,
        groups=list(groups.values()),
    )


def _first(*values) -> str:
    for value in values:
        if value not in (None, ""):
            return str(value)
    return ""


def to_invoice_record(raw) -> InvoiceRecord:
    data = normalize(raw)
    items = data.get("items") or data.get("InvoiceItems") or []
    if not isinstance(items, (list, tuple)):
        logger.warning(f"Lignes de facture ignorées, type inattendu : {type(items).__name__}")
        items = []
    fields = {
        **data,
        "items": line_items(items),
        "invoiceDate": data.get("issueDate") or data.get("invoiceDate") or data.get("createdAt"),
        "serviceDate": data.get("serviceDate") or data.get("deliveryDate"),
        "tvaSelfBilling": to_flag(data.get("tvaSelfBilling")) or to_flag(data.get("autoLiquidation")),
        "sellerVatNumber": _first(data.get("sellerVATNumber"), data.get("sellerVatNumber")),
        "notes": _first(data.get("notes"), data.get("description")),
    }
    fields.pop("InvoiceItems", None)
    return InvoiceRecord.model_validate(fields)


def map_seller(raw) -> SellerInfo:
    """Informations légales du vendeur.

    Pour chaque champ, la première valeur non vide dans un ordre fixe l'emporte :
    champs à plat de l'utilisateur d'abord, puis l'objet `Company`.
    Les coordonnées bancaires suivent l'ordre inverse (objet imbriqué d'abord).
    """
    if isinstance(raw, SellerInfo):
        return raw
    user = _as_mapping(raw)
    company = _as_mapping(user.get("Company"))
    bank = _as_mapping(company.get("bankInfo") or user.get("bankInfo"))

    return SellerInfo(
        company_name=_first(user.get("companyName"), company.get("name"), company.get("companyName")),
        address=_first(user.get("address"), company.get("address")),
        city=_first(user.get("city"), company.get("city")),
        postal_code=_first(user.get("postalCode"), company.get("postalCode")),
        country=_first(user.get("country"), company.get("country")),
        phone=_first(user.get("phone"), company.get("phone")),
        email=_first(user.get("email"), company.get("email")),
        vat_number=_first(user.get("vatNumber"), company.get("vatNumber")),
        siren=_first(user.get("siren"), user.get("sirenNumber"), company.get("sirenNumber"), company.get("siren")),
        siret=_first(user.get("siret"), user.get("siretNumber"), company.get("siretNumber"), company.get("siret")),
        legal_form=_first(user.get("legalForm"), company.get("legalForm")),
        registered_capital=to_number(
            _first(user.get("registeredCapital"), user.get("capital"), company.get("registeredCapital"))
        ),
        rcs_number=_first(user.get("rcsNumber"), company.get("rcsNumber")),
        naf_code=_first(user.get("nafCode"), company.get("nafCode")),
        bank_info=BankInfo(
            iban=_first(bank.get("iban"), user.get("bankIBAN"), user.get("iban")),
            bic=_first(bank.get("bic"), user.get("bankBIC"), user.get("bic")),
            bank_name=_first(bank.get("bankName"), user.get("bankName")),
            account_holder=_first(
                bank.get("accountHolder"),
                user.get("accountHolder"),
                " ".join(p for p in (user.get("firstName"), user.get("lastName")) if p),
            ),
        ),
    )


def map_client(raw) -> Optional[ClientInfo]:
    if raw is None or isinstance(raw, ClientInfo):
        return raw
    data = dict(_as_mapping(raw))
    data["companyName"] = _first(data.get("companyName"), data.get("company"))
    data["contactName"] = _first(data.get("contactName"), data.get("name"))
    data["siren"] = _first(data.get("siren"), data.get("sirenNumber"))
    data["siret"] = _first(data.get("siret"), data.get("siretNumber"))
    try:
        return ClientInfo.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Client illisible, rendu sans client : {e}")
        return None
