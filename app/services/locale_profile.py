# app/services/locale_profile.py
"""Profil de rendu selon le mode de facture ("fr" ou standard).

Le profil est construit une fois par rendu ; les blocs du PDF et l'aperçu
HTML l'interrogent au lieu de tester le mode eux-mêmes.
"""
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

from app.models.invoice import ClientInfo, InvoiceRecord, SellerInfo
from app.services.formatting import (
    FR_MODE,
    format_currency,
    format_date,
    format_percentage,
)
from app.services.invoice_number import prefix_for

DEFAULT_MODE = "default"

EXEMPT_CLAUSE = "TVA non applicable, art. 293 B du CGI (régime de la franchise en base)"
SELF_BILLING_TEXT = (
    "Autoliquidation de la TVA par le preneur conformément à l'article 283-1 "
    "du Code général des impôts (CGI)."
)
STANDARD_TVA_TEXT = (
    "TVA applicable selon l'article 256 du Code général des impôts. "
    "Numéro de TVA intracommunautaire: {vat_number}"
)
FALLBACK_VAT_NUMBER = "FR12345678901"

PROFESSIONAL = "professionnel"


class LegalClause(NamedTuple):
    title: str
    body: str


def _payment_body(payment_terms: str, professional: bool) -> str:
    if professional:
        return (
            f"Paiement à {payment_terms}. En cas de retard de paiement, des pénalités de retard "
            "au taux de 3 fois le taux d'intérêt légal en vigueur seront appliquées de plein droit, "
            "ainsi qu'une indemnité forfaitaire de 40€ pour frais de recouvrement "
            "(articles L441-10 et D441-5 du Code de commerce)."
        )
    return (
        f"Paiement à {payment_terms}. En cas de retard de paiement, des pénalités de retard peuvent "
        "être appliquées conformément à la loi. L'indemnité forfaitaire de 40€ pour frais de "
        "recouvrement ne s'applique pas aux consommateurs."
    )


_STATUTORY_CLAUSES = (
    LegalClause(
        "Clause de réserve de propriété",
        "Les marchandises demeurent la propriété du vendeur jusqu'au paiement intégral du prix, "
        "conformément à la loi n°80-335 du 12 mai 1980. Le défaut de paiement à l'échéance rend "
        "exigible l'intégralité des sommes dues.",
    ),
    LegalClause(
        "Garantie de conformité",
        "Les prestations sont réalisées conformément aux règles de l'art et aux normes en vigueur. "
        "Le prestataire garantit la conformité de ses prestations aux spécifications convenues. "
        "Toute réclamation doit être formulée par écrit dans les 8 jours suivant la livraison.",
    ),
    LegalClause(
        "Vices cachés",
        "Conformément aux articles 1641 à 1649 du Code civil, le prestataire est tenu de la garantie "
        "à raison des défauts cachés qui rendent la chose impropre à l'usage auquel on la destine, "
        "ou qui diminuent tellement cet usage que l'acheteur ne l'aurait pas acquise.",
    ),
    LegalClause(
        "Règlement des litiges",
        "Tout litige relatif à l'interprétation et à l'exécution des présentes sera soumis aux "
        "tribunaux compétents du ressort du siège social du prestataire. Le droit français est "
        "seul applicable.",
    ),
    LegalClause(
        "Protection des données",
        "Conformément au RGPD et à la loi Informatique et Libertés, les données personnelles "
        "collectées sont traitées pour les besoins de la relation commerciale. Vous disposez d'un "
        "droit d'accès, de rectification et de suppression de vos données.",
    ),
    LegalClause(
        "Délai de prescription",
        "Conformément à l'article L110-4 du Code de commerce, toute action judiciaire relative aux "
        "obligations nées du présent contrat se prescrit par 5 ans à compter de la naissance de "
        "l'obligation.",
    ),
)


def is_professional(invoice: InvoiceRecord, client: Optional[ClientInfo]) -> bool:
    """Client professionnel (B2B) : pénalités et indemnité forfaitaire applicables."""
    if invoice.is_professional or PROFESSIONAL in (invoice.client_type, invoice.customer_type):
        return True
    if client is None:
        return False
    return bool(
        client.is_professional
        or client.client_type == PROFESSIONAL
        or client.type == PROFESSIONAL
        or client.is_company
        or client.vat_number
    )


def tva_status(invoice: InvoiceRecord, seller: Optional[SellerInfo] = None) -> str:
    """Mention TVA sans préfixe : franchise, autoliquidation ou régime normal."""
    if invoice.tva_exempt:
        return (invoice.tva_exempt_clause or "").strip() or EXEMPT_CLAUSE
    if invoice.self_billed:
        return SELF_BILLING_TEXT
    vat_number = invoice.seller_vat_number or (seller.vat_number if seller else "") or FALLBACK_VAT_NUMBER
    return STANDARD_TVA_TEXT.format(vat_number=vat_number)


@dataclass(frozen=True)
class LocaleProfile:
    mode: str
    currency: str = "EUR"

    @classmethod
    def for_mode(cls, mode: Optional[str], currency: Optional[str] = None) -> "LocaleProfile":
        return cls(mode=FR_MODE if mode == FR_MODE else DEFAULT_MODE, currency=currency or "EUR")

    @property
    def is_french(self) -> bool:
        return self.mode == FR_MODE

    @property
    def invoice_prefix(self) -> str:
        return prefix_for(self.mode)

    @property
    def shows_legal_sections(self) -> bool:
        return self.is_french

    def currency_text(self, amount) -> str:
        return format_currency(amount, self.currency, self.mode)

    def percentage_text(self, value) -> str:
        return format_percentage(value, self.mode)

    def date_text(self, value) -> str:
        return format_date(value, self.mode)

    def tva_info_text(self, invoice: InvoiceRecord, seller: Optional[SellerInfo] = None) -> str:
        if not self.is_french:
            return ""
        return f"Statut TVA: {tva_status(invoice, seller)}"

    def legal_clauses(
        self,
        invoice: InvoiceRecord,
        client: Optional[ClientInfo],
        seller: Optional[SellerInfo] = None,
    ) -> List[LegalClause]:
        if not self.is_french:
            return []
        professional = is_professional(invoice, client)
        return [
            LegalClause("Régime de TVA", tva_status(invoice, seller)),
            LegalClause(
                "Identité du prestataire",
                "Le prestataire certifie l'exactitude des informations figurant sur cette facture "
                "conformément à l'article 289 du Code général des impôts. Toutes les mentions "
                "légales obligatoires sont présentes sur cette facture.",
            ),
            LegalClause("Conditions de paiement", _payment_body(invoice.payment_terms, professional)),
            *_STATUTORY_CLAUSES,
        ]
