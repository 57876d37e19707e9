# app/services/pdf_generator.py
"""Moteur de mise en page des factures PDF.

Page 1 : vendeur / client, détails, adresse de livraison, lignes (dans la
place laissée par le bloc des totaux) et totaux ancrés en bas de page.
Page 2 : suite des lignes éventuelle, conditions légales sur deux colonnes,
puis le bloc compact TVA / coordonnées bancaires.

Chaque bloc reçoit son y de départ et retourne la hauteur consommée ;
seul `InvoiceLayoutEngine.render` fait avancer le curseur (RenderState).
Un moteur et une surface neufs sont créés pour chaque rendu.
"""
import logging
import math
import re
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, NamedTuple, Optional, Sequence

from pydantic import ValidationError

from app.models.invoice import (
    ClientInfo,
    InvoiceRecord,
    LineItem,
    RenderResult,
    SellerInfo,
    TotalsSummary,
)
from app.services.amounts import compute_totals, map_client, map_seller, to_invoice_record
from app.services.delivery_address import resolve_delivery_address
from app.services.drawing import (
    FONT,
    FONT_BOLD,
    DocumentInfo,
    DrawingSurface,
    DrawingSurfaceError,
    PageConfig,
    ReportLabSurface,
)
from app.services.formatting import plain_number
from app.services.invoice_number import generate_number
from app.services.locale_profile import LegalClause, LocaleProfile

logger = logging.getLogger(__name__)

FONT_SIZES = {
    "title": 16,
    "subtitle": 12,
    "heading": 10,
    "body": 9,
    "small": 8,
    "tiny": 7,
}

LINE = 12
ROW_HEIGHT = 24
TABLE_TITLE_HEIGHT = 40
TABLE_HEADER_HEIGHT = 25
TABLE_FOOTER_HEIGHT = 10
CELL_PADDING = 8
TOTALS_WIDTH = 200
TOTALS_GAP = 20
INVOICE_DETAILS_HEIGHT = 95
COLUMN_GAP = 20
CLAUSE_GAP = 6
CLAUSE_LINE_GAP = 1.5
BANK_LINE_HEIGHT = 12
CONTINUATION_SHARE = 0.45
BANK_TVA_SHARE = 0.2
BANK_HEADER = "INFORMATIONS BANCAIRES :"
LEGAL_TITLE = "Conditions légales"


class Column(NamedTuple):
    label: str
    width: float
    align: str


COLUMNS = (
    Column("Description", 220, "left"),
    Column("Qté", 60, "center"),
    Column("Prix unitaire", 90, "right"),
    Column("TVA", 60, "center"),
    Column("Total HT", 90, "right"),
)

_UNPRINTABLE = re.compile(r"[^\x20-\x7E\xA0-\u017F€]")


def clean_line(text: str) -> str:
    """Retire les caractères que les polices standard ne savent pas dessiner."""
    return " ".join(_UNPRINTABLE.sub("", text or "").split())


class RenderError(Exception):
    """Échec du rendu d'une facture ; porte le message de la surface de dessin."""


@dataclass
class RenderState:
    y: float
    page_count: int = 1

    def advance(self, height: float) -> None:
        self.y += height

    def remaining(self, page: PageConfig) -> float:
        return page.bottom - self.y


@dataclass
class ItemsTableResult:
    height: float
    next_index: int
    rendered_count: int
    overflow_count: int


@dataclass
class ClauseFlowResult:
    height: float
    dropped: List[LegalClause] = field(default_factory=list)


class RenderedDocument(NamedTuple):
    buffer: bytes
    page_count: int


class InvoiceLayoutEngine:

    def __init__(self, surface: DrawingSurface, profile: LocaleProfile):
        self.surface = surface
        self.profile = profile
        self.page = surface.page

    # -- utilitaires de dessin -------------------------------------------------

    def _text(self, text, x, y, *, size="body", bold=False, **options):
        self.surface.draw_text(
            text, x, y, font=FONT_BOLD if bold else FONT, size=FONT_SIZES[size], **options
        )

    def _measure(self, text, width, *, size="body", bold=False, line_gap=0) -> float:
        return self.surface.measure_height(
            text, width=width, font=FONT_BOLD if bold else FONT,
            size=FONT_SIZES[size], line_gap=line_gap,
        )

    # -- en-tête ---------------------------------------------------------------

    def company_block(self, seller: SellerInfo, x: float, y: float, width: float) -> float:
        start = y
        lines = []
        postal_line = " ".join(p for p in (seller.postal_code, seller.city) if p)
        for value, template in (
            (seller.address, "{}"),
            (postal_line, "{}"),
            (seller.phone, "Tél: {}"),
            (seller.email, "Email: {}"),
            (seller.vat_number, "N° TVA: {}"),
            (seller.siren, "SIREN: {}"),
            (seller.siret, "SIRET: {}"),
            (seller.legal_form, "Forme juridique: {}"),
        ):
            if value:
                lines.append(template.format(value))
        if seller.registered_capital:
            lines.append(f"Capital social: {self.profile.currency_text(seller.registered_capital)}")
        if seller.rcs_number:
            lines.append(f"RCS: {seller.rcs_number}")
        if seller.naf_code:
            lines.append(f"Code NAF: {seller.naf_code}")

        if not seller.company_name and not lines:
            return 0

        self._text("Vendeur / Prestataire", x, y, size="subtitle", bold=True)
        y += 20
        if seller.company_name:
            self._text(seller.company_name, x, y, bold=True, width=width)
            y += 15
        for line in lines:
            self._text(line, x, y, width=width, height=LINE)
            y += LINE
        return y - start

    def client_block(self, client: Optional[ClientInfo], x: float, y: float, width: float) -> float:
        if client is None or not client.has_billing_address:
            return 0
        start = y
        self._text("Adresse de facturation", x, y, size="subtitle", bold=True)
        y += 15

        lines = []
        if client.company_name:
            lines.append(client.company_name)
        if client.contact_name:
            lines.append(f"A l'attention de: {client.contact_name}")
        if client.address:
            lines.append(clean_line(client.address))
        city_line = ", ".join(p for p in (client.city, client.postal_code) if p)
        if city_line:
            lines.append(clean_line(city_line))
        if client.country:
            lines.append(client.country)
        if client.vat_number:
            lines.append(f"Numéro de TVA: {client.vat_number}")

        text = "\n".join(lines)
        text_height = self._measure(text, width - 30)
        y += 10
        self._text(text, x + 15, y, width=width - 30)
        y += text_height + 15
        return y - start

    def invoice_details_block(self, invoice: InvoiceRecord, invoice_number: str, y: float) -> float:
        left = self.page.margin + 15
        right = self.page.margin + self.page.content_width / 2
        y += 15

        self._text("N° de facture:", left, y, bold=True)
        self._text(invoice_number, left, y + 12)
        self._text("Date de facture:", left, y + 30, bold=True)
        self._text(self.profile.date_text(invoice.invoice_date), left, y + 42)

        if invoice.service_date:
            self._text("Date de prestation:", right, y, bold=True)
            self._text(self.profile.date_text(invoice.service_date), right, y + 12)
        if invoice.due_date:
            self._text("Date d'échéance:", right, y + 30, bold=True)
            self._text(self.profile.date_text(invoice.due_date), right, y + 42)
        return INVOICE_DETAILS_HEIGHT

    def delivery_block(self, invoice: InvoiceRecord, client: Optional[ClientInfo], y: float) -> float:
        if not self.profile.shows_legal_sections:
            return 0
        delivery = resolve_delivery_address(invoice, client)
        lines = [line for line in (clean_line(l) for l in delivery.address_lines) if line]
        if not lines:
            return 0

        start = y
        y += 15
        self._text("Adresse de livraison", self.page.margin, y, size="subtitle", bold=True)
        y += 30
        for line in lines:
            self._text(line, self.page.margin + 15, y, width=self.page.content_width - 30)
            y += 18
        label = clean_line(delivery.label)
        if label:
            y += 5
            self._text(label, self.page.margin + 15, y, size="small", bold=True)
            y += 15
        return y - start + 10

    # -- lignes de facture -----------------------------------------------------

    def _table_header(self, y: float) -> None:
        x = self.page.margin
        self.surface.draw_rect(x, y, self.page.content_width, TABLE_HEADER_HEIGHT, line_width=1)
        col_x = x + CELL_PADDING
        for index, column in enumerate(COLUMNS):
            if index == 0:
                self._text(column.label, col_x, y + 8, bold=True)
            else:
                width = column.width - (CELL_PADDING if column.align == "right" else 0)
                self._text(column.label, col_x, y + 8, bold=True, align=column.align, width=width)
            col_x += column.width

    def _table_row(self, item: LineItem, y: float) -> None:
        x = self.page.margin
        self.surface.draw_rect(x, y, self.page.content_width, ROW_HEIGHT, line_width=0.5)
        description, quantity, unit_price, rate, total = COLUMNS
        col_x = x + CELL_PADDING
        self._text(
            item.description, col_x, y + 8,
            width=description.width - 2 * CELL_PADDING, height=ROW_HEIGHT - 2 * CELL_PADDING,
        )
        col_x += description.width
        self._text(plain_number(item.quantity), col_x, y + 8, align="center", width=quantity.width)
        col_x += quantity.width
        self._text(self.profile.currency_text(item.unit_price), col_x, y + 8,
                   align="right", width=unit_price.width - CELL_PADDING)
        col_x += unit_price.width
        self._text(self.profile.percentage_text(item.rate), col_x, y + 8, align="center", width=rate.width)
        col_x += rate.width
        self._text(self.profile.currency_text(item.line_total), col_x, y + 8,
                   bold=True, align="right", width=total.width - CELL_PADDING)

    def items_table(
        self,
        items: Sequence[LineItem],
        y: float,
        start_index: int = 0,
        max_height: float = 0,
        show_summary: bool = True,
    ) -> ItemsTableResult:
        """Lignes `start_index..` tenant dans `max_height`, à hauteur de ligne fixe.

        Une ligne n'est jamais coupée entre deux pages. Si aucune ligne ne
        tient, rien n'est dessiné. Avec `show_summary`, les lignes restantes
        sont résumées par "+ N lignes supplémentaires".
        """
        chrome = TABLE_TITLE_HEIGHT + TABLE_HEADER_HEIGHT + TABLE_FOOTER_HEIGHT
        usable = max(0, max_height - chrome)
        max_rows = math.floor(usable / ROW_HEIGHT)
        remaining = len(items) - start_index
        if remaining > 0 and max_rows == 0:
            return ItemsTableResult(0, start_index, 0, remaining)

        start = y
        y += 15
        self._text("Détail des prestations", self.page.margin, y, size="subtitle", bold=True)
        y += 25
        self._table_header(y)
        y += TABLE_HEADER_HEIGHT

        end_index = min(len(items), start_index + max_rows)
        for item in items[start_index:end_index]:
            self._table_row(item, y)
            y += ROW_HEIGHT
        self.surface.draw_rect(self.page.margin, y, self.page.content_width, 1, line_width=1)

        overflow = len(items) - end_index
        if overflow > 0 and show_summary:
            self._text(f"+ {overflow} lignes supplémentaires", self.page.margin, y + 6,
                       size="small", bold=True)
            y += 18
            logger.warning(f"{overflow} lignes de facture résumées, non détaillées")

        return ItemsTableResult(
            height=y - start + TABLE_FOOTER_HEIGHT,
            next_index=end_index,
            rendered_count=end_index - start_index,
            overflow_count=overflow,
        )

    # -- totaux ----------------------------------------------------------------

    @staticmethod
    def totals_height(totals: TotalsSummary) -> float:
        return len(totals.groups) * 25 + 100

    def totals_block(self, totals: TotalsSummary, y: float) -> float:
        height = self.totals_height(totals)
        x = self.page.margin + self.page.content_width - TOTALS_WIDTH
        label_width, value_width = 120, 70
        self.surface.draw_rect(x, y, TOTALS_WIDTH, height, line_width=1)

        row = y + 10
        self._text("Sous-total HT :", x + 10, row, width=label_width)
        self._text(self.profile.currency_text(totals.subtotal), x + label_width, row,
                   width=value_width, align="right")
        row += 25
        for group in totals.groups:
            if group.rate > 0:
                self._text(f"TVA {self.profile.percentage_text(group.rate)} :", x + 10, row, width=label_width)
                self._text(self.profile.currency_text(group.amount), x + label_width, row,
                           width=value_width, align="right")
                row += 20

        self.surface.draw_line(x + 10, row + 5, x + TOTALS_WIDTH - 10, row + 5, line_width=1)
        row += 15
        self._text("Total TTC :", x + 10, row, size="subtitle", bold=True)
        self._text(self.profile.currency_text(totals.grand_total), x + label_width - 30, row,
                   size="subtitle", bold=True, width=value_width + 30, align="right")
        return height

    # -- conditions légales ----------------------------------------------------

    def _write_clause(self, x: float, y: float, width: float, clause: LegalClause, budget: float):
        """Écrit la clause dans la colonne ; retourne (hauteur, reste ou None)."""
        title = f"{clause.title}:"
        title_height = self._measure(title, width, size="small", bold=True)
        body_height = self._measure(clause.body, width, size="tiny", line_gap=CLAUSE_LINE_GAP)

        if title_height + body_height + 8 <= budget:
            self._text(title, x, y, size="small", bold=True, width=width)
            self._text(clause.body, x, y + title_height, size="tiny", width=width,
                       align="justify", line_gap=CLAUSE_LINE_GAP)
            return title_height + body_height + 8, None

        if title_height > budget:
            return 0, clause

        self._text(title, x, y, size="small", bold=True, width=width)
        used = title_height
        words = clause.body.split()

        # plus grand nombre de mots tenant dans la place restante
        low, high = 0, len(words)
        while low < high:
            mid = (low + high + 1) // 2
            candidate = " ".join(words[:mid])
            if used + self._measure(candidate, width, size="tiny", line_gap=CLAUSE_LINE_GAP) <= budget:
                low = mid
            else:
                high = mid - 1

        if low:
            fitted = " ".join(words[:low])
            self._text(fitted, x, y + used, size="tiny", width=width,
                       align="justify", line_gap=CLAUSE_LINE_GAP)
            used += self._measure(fitted, width, size="tiny", line_gap=CLAUSE_LINE_GAP)

        rest = words[low:]
        if not rest:
            return used, None
        return used, LegalClause(f"{clause.title} (suite)", " ".join(rest))

    def legal_clauses_block(self, clauses: Sequence[LegalClause], y: float, max_height: float) -> ClauseFlowResult:
        """Conditions légales sur deux colonnes, sans jamais ouvrir de page.

        Les clauses remplissent la colonne gauche ; la partie d'une clause qui
        ne tient pas passe en tête de la colonne droite. Ce qui ne tient pas
        dans la colonne droite n'est pas imprimé et est retourné dans `dropped`.
        """
        if not clauses:
            return ClauseFlowResult(0)

        start = y
        self._text(LEGAL_TITLE, self.page.margin, y, size="subtitle", bold=True)
        top = y + 15
        budget = max(0, max_height - 15)
        width = (self.page.content_width - COLUMN_GAP) / 2
        columns = (self.page.margin, self.page.margin + width + COLUMN_GAP)

        pending = deque(clauses)
        bottoms = []
        for x in columns:
            col_y = top
            while pending:
                used, leftover = self._write_clause(x, col_y, width, pending[0], budget - (col_y - top))
                col_y += used + CLAUSE_GAP
                if leftover is None:
                    pending.popleft()
                    continue
                pending[0] = leftover
                break
            bottoms.append(col_y)

        if pending:
            logger.warning(
                "Conditions légales tronquées faute de place",
                extra={"extra": {"dropped": [c.title for c in pending]}},
            )
        return ClauseFlowResult(max(bottoms) - start, list(pending))

    # -- TVA et banque ---------------------------------------------------------

    def bank_tva_block(self, invoice: InvoiceRecord, seller: SellerInfo, y: float, max_height: float) -> float:
        if not self.profile.shows_legal_sections:
            return 0
        tva_info = self.profile.tva_info_text(invoice, seller)
        bank = seller.bank_info
        if not tva_info and not bank.has_any:
            return 0

        width = (self.page.content_width - COLUMN_GAP) / 2
        left = self.page.margin
        right = self.page.margin + width + COLUMN_GAP

        tva_height = self._measure(tva_info, width - 20) + 28 if tva_info else 0
        bank_lines = []
        if bank.has_any:
            bank_lines.append(BANK_HEADER)
            for value, template in (
                (bank.iban, "IBAN: {}"),
                (bank.bic, "BIC: {}"),
                (bank.bank_name, "Banque: {}"),
                (bank.account_holder, "Titulaire: {}"),
            ):
                if value:
                    bank_lines.append(template.format(value))
        bank_height = len(bank_lines) * BANK_LINE_HEIGHT + 18 if bank_lines else 0

        limit = max_height if max_height > 0 else self.page.content_height * BANK_TVA_SHARE
        container = min(max(tva_height, bank_height) + 20, limit)
        if bank_lines and bank_height > container - 20:
            bank_lines = [BANK_HEADER]
            if bank.iban:
                bank_lines.append(f"IBAN: {bank.iban}")
            if bank.bic:
                bank_lines.append(f"BIC: {bank.bic}")

        self.surface.draw_rect(self.page.margin, y, self.page.content_width, container, line_width=1)
        if tva_info:
            self._text("Information TVA", left + 10, y + 8, size="subtitle", bold=True)
            self._text(tva_info, left + 10, y + 25, width=width - 20)
        if bank_lines:
            self._text(bank_lines[0], right + 10, y + 8, size="subtitle", bold=True, width=width - 20)
            line_y = y + 25
            for line in bank_lines[1:]:
                self._text(line, right + 10, line_y, width=width - 20)
                line_y += BANK_LINE_HEIGHT
        return container + 8

    # -- orchestration ---------------------------------------------------------

    def _new_page(self, state: RenderState) -> None:
        self.surface.new_page()
        state.page_count = self.surface.page_count
        state.y = self.page.margin

    def render(
        self,
        invoice: InvoiceRecord,
        seller: SellerInfo,
        client: Optional[ClientInfo],
        invoice_number: str,
    ) -> RenderedDocument:
        page = self.page
        items = invoice.items
        try:
            self.surface.begin_document(DocumentInfo(title=f"Facture {invoice_number}"))
            state = RenderState(y=page.margin, page_count=self.surface.page_count)

            half = page.content_width / 2
            company_height = self.company_block(seller, page.margin, state.y, half - 10)
            client_height = self.client_block(client, page.margin + half + 10, state.y, half - 10)
            state.advance(max(company_height, client_height) + 20)
            state.advance(self.invoice_details_block(invoice, invoice_number, state.y) + 15)
            state.advance(self.delivery_block(invoice, client, state.y))

            totals = compute_totals(invoice)
            totals_height = self.totals_height(totals)
            reserved = totals_height + TOTALS_GAP
            first = self.items_table(
                items, state.y, 0, max(0, state.remaining(page) - reserved), show_summary=False
            )
            state.advance(first.height)

            totals_y = page.bottom - reserved
            self.totals_block(totals, totals_y)
            state.y = totals_y + totals_height

            if first.next_index < len(items):
                self._new_page(state)
                # sans sections légales, la page de suite appartient au tableau
                if self.profile.shows_legal_sections:
                    budget = math.floor(page.content_height * CONTINUATION_SHARE)
                else:
                    budget = state.remaining(page)
                continuation = self.items_table(
                    items, state.y, first.next_index, budget, show_summary=True,
                )
                state.advance(continuation.height)
            elif self.profile.shows_legal_sections:
                self._new_page(state)

            if self.profile.shows_legal_sections:
                reserve = math.floor(page.content_height * BANK_TVA_SHARE)
                legal_max = max(0, state.remaining(page) - reserve - 10)
                flow = self.legal_clauses_block(
                    self.profile.legal_clauses(invoice, client, seller), state.y, legal_max
                )
                state.advance(flow.height + 8)
                state.advance(self.bank_tva_block(invoice, seller, state.y, state.remaining(page)))

            buffer = self.surface.finish()
        except DrawingSurfaceError as e:
            raise RenderError(str(e)) from e
        return RenderedDocument(buffer, state.page_count)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def render_invoice_pdf(
    invoice,
    seller,
    client,
    mode: str = "fr",
    surface_factory: Callable[[], DrawingSurface] = ReportLabSurface,
    today: Optional[date] = None,
) -> RenderResult:
    """Rend une facture en PDF.

    Accepte les enregistrements bruts (dict camelCase) ou les modèles déjà
    normalisés. Un échec de la surface de dessin donne `success=False` et
    aucun tampon partiel.
    """
    start = time.time()
    try:
        record = to_invoice_record(invoice)
        seller_info = map_seller(seller)
        client_info = map_client(client)
    except ValidationError as e:
        logger.error(f"Facture illisible, rendu impossible : {e}")
        return RenderResult(success=False, error="Données de facture invalides")
    today = today or _utc_today()
    invoice_number = generate_number(record, mode, today)
    profile = LocaleProfile.for_mode(mode, record.currency)

    engine = InvoiceLayoutEngine(surface_factory(), profile)
    try:
        document = engine.render(record, seller_info, client_info, invoice_number)
    except RenderError as e:
        logger.error(f"Erreur génération PDF {invoice_number} : {e}")
        return RenderResult(success=False, error=str(e))

    if not document.buffer:
        logger.error(f"PDF vide pour la facture {invoice_number}")
        return RenderResult(success=False, error="PDF vide")

    filename = f"facture_{invoice_number}_{today.isoformat()}.pdf"
    duration = round((time.time() - start) * 1000)
    logger.info("Facture PDF générée", extra={"extra": {
        "invoice_number": invoice_number,
        "pages": document.page_count,
        "size": len(document.buffer),
        "duration_ms": duration,
    }})
    return RenderResult(
        success=True,
        buffer=document.buffer,
        filename=filename,
        page_count=document.page_count,
    )
