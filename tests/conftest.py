import math

import pytest

from app.services.drawing import DrawingSurfaceError, PageConfig


class RecordingSurface:
    """Surface factice : enregistre les appels au lieu de dessiner.

    Hauteur de texte déterministe : 0,5 × taille de police par caractère.
    """

    def __init__(self, page=PageConfig()):
        self.page = page
        self.texts = []
        self.rects = []
        self.lines = []
        self.info = None
        self._page_count = 0

    @property
    def page_count(self):
        return self._page_count

    def begin_document(self, info):
        self.info = info
        self._page_count = 1

    def _line_count(self, text, width, size):
        if not text:
            return 0
        if width is None:
            return len(text.split("\n"))
        per_line = max(1, int(width // (size * 0.5)))
        return sum(max(1, math.ceil(len(part) / per_line)) for part in text.split("\n"))

    def measure_height(self, text, *, width, font="Helvetica", size=9, line_gap=0):
        return self._line_count(text, width, size) * (size * 1.2 + line_gap)

    def draw_text(self, text, x, y, *, width=None, height=None, align="left",
                  font="Helvetica", size=9, color="#000000", line_gap=0):
        self.texts.append({"text": text, "x": x, "y": y, "page": self._page_count,
                           "font": font, "size": size, "width": width})

    def draw_rect(self, x, y, w, h, *, line_width=1, stroke="#000000"):
        self.rects.append({"x": x, "y": y, "w": w, "h": h, "page": self._page_count})

    def draw_line(self, x1, y1, x2, y2, *, line_width=1, stroke="#000000"):
        self.lines.append((x1, y1, x2, y2, self._page_count))

    def new_page(self):
        self._page_count += 1

    def finish(self):
        return b"%PDF-fake"

    def all_text(self):
        return "\n".join(t["text"] for t in self.texts)

    def texts_on(self, page):
        return [t["text"] for t in self.texts if t["page"] == page]


class FailingSurface(RecordingSurface):
    """Échoue au passage à la page suivante, comme un flux PDF corrompu."""

    def new_page(self):
        raise DrawingSurfaceError("flux PDF fermé")


@pytest.fixture
def surfaces():
    """Fabrique de RecordingSurface ; garde la trace des surfaces créées."""
    created = []

    def factory():
        surface = RecordingSurface()
        created.append(surface)
        return surface

    factory.created = created
    return factory


@pytest.fixture
def seller():
    return {
        "companyName": "ACME SAS",
        "address": "12 rue de la Paix",
        "city": "Paris",
        "postalCode": "75001",
        "country": "France",
        "email": "contact@acme.fr",
        "vatNumber": "FR12345678900",
        "siret": "12345678900017",
        "legalForm": "SAS",
        "registeredCapital": "10000",
        "Company": {
            "bankInfo": {"iban": "FR7630006000011234567890189", "bic": "AGRIFRPP", "bankName": "Crédit Agricole"},
        },
    }


@pytest.fixture
def client_data():
    return {
        "companyName": "CLIENT SARL",
        "contactName": "Marie Durand",
        "address": "5 avenue Victor Hugo",
        "city": "Lyon",
        "postalCode": "69001",
        "country": "France",
        "vatNumber": "FR98765432100",
    }


@pytest.fixture
def invoice():
    return {
        "invoiceNumber": "INV-2025-42",
        "issueDate": "2026-10-01",
        "serviceDate": "2026-09-30",
        "dueDate": "2026-10-31",
        "currency": "EUR",
        "items": [
            {"description": "Développement", "quantity": 2, "unitPrice": 150, "tvaRate": 20},
            {"description": "Formation", "quantity": 1, "unitPrice": "99,90", "tvaRate": 10},
        ],
    }


def make_items(count, rate=20):
    return [
        {"description": f"Ligne {i}", "quantity": 1, "unitPrice": 10, "tvaRate": rate}
        for i in range(1, count + 1)
    ]
