# app/services/delivery_address.py
import logging
from typing import List, Optional

from app.models.invoice import (
    ClientInfo,
    DeliveryAddressResolution,
    DeliveryAddressType,
    InvoiceRecord,
)

logger = logging.getLogger(__name__)

LABEL_CUSTOM = "Adresse de livraison personnalisée"
LABEL_SAME_AS_BILLING = "Même adresse que la facturation"
LABEL_DELIVERY = "Adresse de livraison"


def _lines(client: Optional[ClientInfo], street: str, postal_code: str, city: str, country: str) -> List[str]:
    lines = []
    if client is not None:
        if client.company_name:
            lines.append(client.company_name)
        if client.contact_name:
            lines.append(client.contact_name)
    if street:
        lines.append(street)
    city_line = " ".join(p for p in (postal_code, city) if p)
    if city_line:
        lines.append(city_line)
    if country:
        lines.append(country)
    return lines


def _billing_lines(client: ClientInfo) -> List[str]:
    return _lines(client, client.address, client.postal_code, client.city, client.country)


def _found(kind: DeliveryAddressType, label: str, lines: List[str]) -> DeliveryAddressResolution:
    return DeliveryAddressResolution(
        has_delivery_address=True, type=kind, label=label, address_lines=lines
    )


def _resolve(invoice: InvoiceRecord, client: Optional[ClientInfo]) -> DeliveryAddressResolution:
    custom = (invoice.custom_delivery_address or "").strip()
    if custom:
        return _found(DeliveryAddressType.CUSTOM, LABEL_CUSTOM, [custom])

    has_billing = client is not None and client.has_billing_address
    if invoice.delivery_address_same_as_billing and has_billing:
        return _found(DeliveryAddressType.BILLING, LABEL_SAME_AS_BILLING, _billing_lines(client))

    if (invoice.delivery_address or invoice.delivery_city
            or invoice.delivery_postal_code or invoice.delivery_country):
        lines = _lines(
            client,
            invoice.delivery_address,
            invoice.delivery_postal_code,
            invoice.delivery_city,
            invoice.delivery_country,
        )
        return _found(DeliveryAddressType.INVOICE, LABEL_DELIVERY, lines)

    if has_billing and client.same_as_address:
        return _found(DeliveryAddressType.CLIENT_BILLING, LABEL_SAME_AS_BILLING, _billing_lines(client))

    if client is not None and client.has_delivery_address:
        lines = _lines(
            client,
            client.delivery_address,
            client.delivery_postal_code,
            client.delivery_city,
            client.delivery_country,
        )
        return _found(DeliveryAddressType.CLIENT_DELIVERY, LABEL_DELIVERY, lines)

    return DeliveryAddressResolution(
        has_delivery_address=False, type=DeliveryAddressType.NONE, label=LABEL_DELIVERY
    )


def resolve_delivery_address(invoice: InvoiceRecord, client: Optional[ClientInfo]) -> DeliveryAddressResolution:
    """Choisit l'adresse de livraison à afficher, première règle satisfaite.

    1. adresse personnalisée saisie sur la facture
    2. facture marquée "même adresse que la facturation"
    3. champs de livraison de la facture
    4. client marqué "même adresse" (adresse de facturation du client)
    5. adresse de livraison propre au client

    Ne lève jamais : une donnée inattendue donne le type `error`.
    """
    try:
        return _resolve(invoice, client)
    except Exception as e:
        logger.error(f"Erreur résolution adresse de livraison : {e}")
        return DeliveryAddressResolution(
            has_delivery_address=False, type=DeliveryAddressType.ERROR, label=LABEL_DELIVERY
        )
