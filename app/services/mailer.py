# app/services/mailer.py
"""Envoi d'une facture par email : rendu PDF, lien de paiement, envoi.

Le transport (SMTP, API) et le fournisseur de liens de paiement sont
injectés ; ce module ne fait qu'orchestrer.
"""
import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from app.models.invoice import DispatchResult
from app.services.amounts import display_amount, to_invoice_record
from app.services.html_preview import render_template
from app.services.invoice_number import generate_number
from app.services.pdf_generator import render_invoice_pdf

logger = logging.getLogger(__name__)

PAYMENT_LINK_EXPIRY_DAYS = int(os.getenv("PAYMENT_LINK_EXPIRY_DAYS", "30"))


class EmailSender(Protocol):
    def send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Retourne {"success": True, "messageId": ...} ou {"success": False, "error": ...}.

        Peut aussi lever en cas d'échec du transport.
        """
        ...


class PaymentLinkProvider(Protocol):
    def create_link(self, invoice_number: str, amount, currency: str, expiry_days: int) -> str: ...


def default_text(invoice_number: str, amount_text: str, payment_link: Optional[str]) -> str:
    lines = [
        "Bonjour,",
        "",
        f"Veuillez trouver ci-joint la facture {invoice_number} d'un montant de {amount_text}.",
    ]
    if payment_link:
        lines += ["", f"Vous pouvez régler cette facture en ligne : {payment_link}"]
    lines += ["", "Cordialement."]
    return "\n".join(lines)


def default_html(invoice_number: str, amount_text: str, payment_link: Optional[str]) -> str:
    return render_template(
        "invoice_email.html",
        invoice_number=invoice_number,
        amount_text=amount_text,
        payment_link=payment_link,
    )


class InvoiceMailer:

    def __init__(
        self,
        sender: EmailSender,
        payment_links: Optional[PaymentLinkProvider] = None,
        expiry_days: int = PAYMENT_LINK_EXPIRY_DAYS,
    ):
        self.sender = sender
        self.payment_links = payment_links
        self.expiry_days = expiry_days

    def _payment_link(self, invoice_number: str, amount, currency: str) -> Optional[str]:
        if self.payment_links is None:
            return None
        try:
            return self.payment_links.create_link(invoice_number, amount, currency, self.expiry_days)
        except Exception as e:
            logger.warning(f"Lien de paiement indisponible pour {invoice_number}, envoi sans lien : {e}")
            return None

    def generate_and_send(
        self,
        invoice,
        seller,
        client,
        recipient: str,
        subject: Optional[str] = None,
        custom_text: Optional[str] = None,
        custom_html: Optional[str] = None,
        mode: str = "fr",
        today: Optional[date] = None,
    ) -> DispatchResult:
        try:
            record = to_invoice_record(invoice)
        except ValidationError as e:
            logger.error(f"Email non envoyé, facture illisible : {e}")
            return DispatchResult(success=False, recipient=recipient, error="Données de facture invalides")
        invoice_number = generate_number(record, mode, today)

        rendered = render_invoice_pdf(record, seller, client, mode=mode, today=today)
        if not rendered.success:
            logger.error(f"Email non envoyé, échec du rendu de {invoice_number} : {rendered.error}")
            return DispatchResult(success=False, recipient=recipient, error=f"Échec génération PDF : {rendered.error}")

        amount = record.total or 0
        amount_text = display_amount(record, record.currency, mode)
        payment_link = self._payment_link(invoice_number, amount, record.currency)

        attachments: List[Dict[str, Any]] = [{
            "filename": rendered.filename,
            "content": rendered.buffer,
            "contentType": "application/pdf",
        }]
        message = {
            "to": recipient,
            "subject": subject or f"Facture {invoice_number}",
            "text": custom_text or default_text(invoice_number, amount_text, payment_link),
            "html": custom_html or default_html(invoice_number, amount_text, payment_link),
            "attachments": attachments,
        }

        try:
            sent = self.sender.send(message)
        except Exception as e:
            logger.error(f"Échec envoi email facture {invoice_number} à {recipient} : {e}")
            return DispatchResult(success=False, recipient=recipient, error=str(e))

        sent = sent or {}
        if sent.get("success") is False:
            error = sent.get("error") or "envoi refusé"
            logger.error(f"Envoi refusé pour la facture {invoice_number} à {recipient} : {error}")
            return DispatchResult(success=False, recipient=recipient, error=str(error))

        logger.info("Facture envoyée par email", extra={"extra": {
            "invoice_number": invoice_number,
            "recipient": recipient,
            "pdf_size": len(rendered.buffer),
        }})
        return DispatchResult(
            success=True,
            message_id=sent.get("messageId"),
            recipient=recipient,
            pdf_size=len(rendered.buffer),
        )
