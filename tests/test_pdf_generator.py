import re
from datetime import date

import pytest

from conftest import FailingSurface, RecordingSurface, make_items
from app.models.invoice import InvoiceRecord, SellerInfo
from app.services.drawing import ReportLabSurface
from app.services.locale_profile import LegalClause, LocaleProfile
from app.services.pdf_generator import InvoiceLayoutEngine, render_invoice_pdf

TODAY = date(2026, 10, 18)
ROW = re.compile(r"^Ligne (\d+)$")


def _render(invoice, seller, client, surfaces, mode="fr"):
    result = render_invoice_pdf(invoice, seller, client, mode=mode, surface_factory=surfaces, today=TODAY)
    return result, surfaces.created[-1]


def _rows(surface, page):
    return [int(m.group(1)) for m in (ROW.match(t) for t in surface.texts_on(page)) if m]


def _totals_rect(surface):
    return next(r for r in surface.rects if r["w"] == 200)


def test_render_ok(invoice, seller, client_data, surfaces):
    """Facture simple : succès, deux pages en mode fr, nom de fichier daté."""
    result, surface = _render(invoice, seller, client_data, surfaces)
    assert result.success
    assert result.buffer == b"%PDF-fake"
    assert result.page_count == 2
    assert result.filename == "facture_FR-2026-000042_2026-10-18.pdf"
    assert surface.info.title == "Facture FR-2026-000042"
    assert surface.info.author == "Invoice System"


def test_default_mode_single_page(invoice, seller, client_data, surfaces):
    result, surface = _render(invoice, seller, client_data, surfaces, mode="default")
    assert result.page_count == 1
    assert "Conditions légales" not in surface.all_text()
    assert "Adresse de livraison" not in surface.all_text()


def test_header_blocks(invoice, seller, client_data, surfaces):
    _, surface = _render(invoice, seller, client_data, surfaces)
    text = surface.all_text()
    assert "Vendeur / Prestataire" in text
    assert "Capital social: 10 000,00 €" in text
    assert "A l'attention de: Marie Durand" in text
    assert "Lyon, 69001" in text
    assert "1 octobre 2026" in text
    assert "31 octobre 2026" in text


def test_totals_anchored_whatever_the_item_count(invoice, seller, client_data, surfaces):
    """La position du bloc des totaux ne dépend que du nombre de taux."""
    few = dict(invoice, items=make_items(1))
    many = dict(invoice, items=make_items(12))
    _, first = _render(few, seller, client_data, surfaces)
    _, second = _render(many, seller, client_data, surfaces)

    page = first.page
    expected = page.height - page.margin - (1 * 25 + 100 + 20)
    assert _totals_rect(first)["y"] == pytest.approx(expected)
    assert _totals_rect(second)["y"] == pytest.approx(expected)
    assert _totals_rect(first)["page"] == 1


def test_rows_never_overlap_totals(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, items=make_items(40)), seller, client_data, surfaces)
    totals_y = _totals_rect(surface)["y"]
    rows = [r for r in surface.rects if r["h"] == 24 and r["page"] == 1]
    assert rows
    assert all(r["y"] + r["h"] <= totals_y for r in rows)


def test_pagination_no_duplicate_no_loss(invoice, seller, client_data, surfaces):
    """Chaque ligne est soit dessinée une seule fois, soit comptée dans le résumé."""
    result, surface = _render(dict(invoice, items=make_items(40)), seller, client_data, surfaces)
    first, second = _rows(surface, 1), _rows(surface, 2)

    assert first == list(range(1, len(first) + 1))
    assert second == list(range(len(first) + 1, len(first) + len(second) + 1))

    summary = [t for t in surface.texts_on(2) if t.startswith("+ ")]
    assert len(summary) == 1
    hidden = int(re.match(r"\+ (\d+) lignes supplémentaires", summary[0]).group(1))
    assert len(first) + len(second) + hidden == 40
    assert result.page_count == 2

def test_default_mode_continuation_draws_every_row(invoice, seller, client_data, surfaces):
    """Sans sections légales, la page de suite détaille toutes les lignes restantes."""
    result, surface = _render(dict(invoice, items=make_items(30)), seller, client_data, surfaces, mode="default")
    first, second = _rows(surface, 1), _rows(surface, 2)

    assert first and second
    assert first + second == list(range(1, 31))
    assert not any(t["text"].startswith("+ ") for t in surface.texts)
    assert result.page_count == 2



def test_items_fitting_on_page_one_have_no_summary(invoice, seller, client_data, surfaces):
    _, surface = _render(invoice, seller, client_data, surfaces)
    assert not any(t["text"].startswith("+ ") for t in surface.texts)


def test_totals_rows(invoice, seller, client_data, surfaces):
    _, surface = _render(invoice, seller, client_data, surfaces)
    text = surface.all_text()
    assert "Sous-total HT :" in text
    assert "TVA 20,0 % :" in text
    assert "TVA 10,0 % :" in text
    assert "469,89 €" in text


def test_zero_rate_has_no_tva_row(seller, client_data, surfaces):
    invoice = {"invoiceNumber": "FR-2026-000003", "items": make_items(2, rate=0)}
    _, surface = _render(invoice, seller, client_data, surfaces)
    assert not any(t.startswith("TVA 0") for t in surface.texts_on(1))


def test_exempt_invoice_mentions_article_293_b(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, tvaExempt=True), seller, client_data, surfaces)
    assert "art. 293 B du CGI" in surface.all_text()


def test_custom_exempt_clause(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, tvaExempt=True, tvaExemptClause="Exonération art. 261"),
                         seller, client_data, surfaces)
    assert "Statut TVA: Exonération art. 261" in surface.all_text()


def test_self_billing_mentions_article_283_1(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, autoLiquidation=True), seller, client_data, surfaces)
    assert "article 283-1" in surface.all_text()


def _clause_texts(surface, page):
    return [t["text"] for t in surface.texts if t["page"] == page and t["size"] == 7]


def test_exempt_scenario_clause_and_total(seller, client_data, surfaces):
    """Franchise en base : mention art. 293 B dans les conditions légales, total sans TVA."""
    invoice = {
        "invoiceNumber": "FR-2026-000007",
        "tvaExempt": True,
        "items": [
            {"description": "Conseil", "quantity": 2, "unitPrice": 500, "tvaRate": 0},
            {"description": "Audit", "quantity": 1, "unitPrice": 1200, "tvaRate": 0},
        ],
    }
    result, surface = _render(invoice, seller, client_data, surfaces)
    assert result.success
    assert any("TVA non applicable, art. 293 B du CGI" in t for t in _clause_texts(surface, 2))
    assert "2 200,00 €" in surface.texts_on(1)


def test_self_billing_scenario(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, tvaSelfBilling=True), seller, client_data, surfaces)
    assert any(t.startswith("Autoliquidation") for t in _clause_texts(surface, 2))
    assert any(t.startswith("Statut TVA: Autoliquidation") for t in surface.texts_on(2))


def test_malformed_optional_fields_fall_back_to_defaults(invoice, seller, client_data, surfaces):
    """Booléen ou texte de type inattendu : valeur par défaut, rendu maintenu."""
    broken = dict(invoice, tvaExempt="peut-être", deliveryAddress={"street": "1 rue"}, notes=["a"])
    result, surface = _render(broken, dict(seller, Company="ACME"), client_data, surfaces)
    assert result.success
    assert result.page_count == 2
    assert "art. 293 B du CGI" not in surface.all_text()


def test_legal_and_bank_sections_on_page_two(invoice, seller, client_data, surfaces):
    _, surface = _render(invoice, seller, client_data, surfaces)
    page_two = surface.texts_on(2)
    assert "Conditions légales" in page_two
    assert "INFORMATIONS BANCAIRES :" in page_two
    assert "IBAN: FR7630006000011234567890189" in page_two
    assert "Information TVA" in page_two


def test_delivery_block(invoice, seller, client_data, surfaces):
    _, surface = _render(dict(invoice, customDeliveryAddress="Entrepôt 4\u200b, quai de Saône"),
                         seller, client_data, surfaces)
    text = surface.all_text()
    assert "Adresse de livraison" in text
    assert "Entrepôt 4, quai de Saône" in text
    assert "Adresse de livraison personnalisée" in text


def test_surface_failure_gives_failed_result(invoice, seller, client_data):
    result = render_invoice_pdf(invoice, seller, client_data, mode="fr",
                                surface_factory=FailingSurface, today=TODAY)
    assert not result.success
    assert result.buffer is None
    assert "flux PDF fermé" in result.error


def _engine():
    surface = RecordingSurface()
    surface.begin_document(None)
    return InvoiceLayoutEngine(surface, LocaleProfile.for_mode("fr")), surface


def test_clauses_fit_when_room():
    engine, surface = _engine()
    clauses = engine.profile.legal_clauses(InvoiceRecord(), None)
    flow = engine.legal_clauses_block(clauses, 25, 700)
    assert flow.dropped == []
    assert flow.height > 0
    assert "Délai de prescription:" in surface.texts_on(1)


def test_clause_split_continues_in_right_column():
    engine, surface = _engine()
    clause = LegalClause("Longue clause", " ".join(["mot"] * 400))
    flow = engine.legal_clauses_block([clause], 25, 150)
    assert flow.dropped == []
    titles = [t for t in surface.texts if t["text"].startswith("Longue clause")]
    assert [t["text"] for t in titles] == ["Longue clause:", "Longue clause (suite):"]
    assert titles[1]["x"] > titles[0]["x"]
    assert flow.height <= 150


def test_clauses_truncated_are_reported(caplog):
    engine, surface = _engine()
    clauses = engine.profile.legal_clauses(InvoiceRecord(), None)
    flow = engine.legal_clauses_block(clauses, 25, 60)
    assert flow.dropped
    assert surface.page_count == 1
    assert "Conditions légales tronquées" in caplog.text


def test_blocks_tolerate_missing_input():
    engine, surface = _engine()
    assert engine.client_block(None, 25, 25, 200) == 0
    assert engine.company_block(SellerInfo(), 25, 25, 200) == 0
    assert engine.delivery_block(InvoiceRecord(), None, 25) == 0
    assert engine.bank_tva_block(InvoiceRecord(), SellerInfo(), 25, 200) > 0


def test_reportlab_end_to_end(invoice, seller, client_data):
    result = render_invoice_pdf(dict(invoice, items=make_items(40)), seller, client_data,
                                mode="fr", surface_factory=ReportLabSurface, today=TODAY)
    assert result.success
    assert result.buffer[:4] == b"%PDF"
    assert result.page_count == 2
