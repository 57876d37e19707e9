# app/services/html_preview.py
"""Aperçu HTML de la facture (Jinja2).

Utilise le même profil de formatage et le même calcul des totaux que le
moteur PDF : montants, taux, dates et numéro sont identiques octet pour
octet dans les deux rendus.
"""
from datetime import date
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from app.services.amounts import compute_totals, map_client, map_seller, to_invoice_record
from app.services.delivery_address import resolve_delivery_address
from app.services.formatting import plain_number
from app.services.invoice_number import generate_number
from app.services.locale_profile import LocaleProfile

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=True,
)


def render_template(name: str, **context) -> str:
    return _env.get_template(name).render(**context)


def render_invoice_html(invoice, seller, client, mode: str = "fr", today: Optional[date] = None) -> str:
    record = to_invoice_record(invoice)
    seller_info = map_seller(seller)
    client_info = map_client(client)
    profile = LocaleProfile.for_mode(mode, record.currency)

    delivery = None
    if profile.shows_legal_sections:
        resolution = resolve_delivery_address(record, client_info)
        if resolution.has_delivery_address:
            delivery = resolution

    return render_template(
        "invoice_preview.html",
        invoice=record,
        invoice_number=generate_number(record, mode, today),
        seller=seller_info,
        client=client_info,
        totals=compute_totals(record),
        delivery=delivery,
        tva_info=profile.tva_info_text(record, seller_info),
        clauses=profile.legal_clauses(record, client_info, seller_info),
        profile=profile,
        quantity=plain_number,
    )
