# app/services/drawing.py
"""Surface de dessin utilisée par le moteur de mise en page.

Les coordonnées sont exprimées depuis le coin supérieur gauche de la page
(y croissant vers le bas) ; la conversion vers le repère PDF de reportlab
est faite ici. Toute erreur reportlab remonte en DrawingSurfaceError.
"""
from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Protocol

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen.canvas import Canvas

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
ELLIPSIS = "…"
LEADING_RATIO = 1.2


class DrawingSurfaceError(Exception):
    """Échec de la surface de dessin (génération ou écriture du PDF)."""


@dataclass(frozen=True)
class PageConfig:
    width: float = A4[0]
    height: float = A4[1]
    margin: float = 25

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def content_height(self) -> float:
        return self.height - 2 * self.margin

    @property
    def bottom(self) -> float:
        return self.height - self.margin


@dataclass(frozen=True)
class DocumentInfo:
    title: str = "Facture"
    author: str = "Invoice System"
    subject: str = "Facture"
    keywords: str = "facture, invoice, billing"


class DrawingSurface(Protocol):
    page: PageConfig

    def begin_document(self, info: DocumentInfo) -> None: ...

    def draw_text(self, text: str, x: float, y: float, *, width: Optional[float] = None,
                  height: Optional[float] = None, align: str = "left", font: str = FONT,
                  size: float = 9, color: str = "#000000", line_gap: float = 0) -> None: ...

    def measure_height(self, text: str, *, width: float, font: str = FONT,
                       size: float = 9, line_gap: float = 0) -> float: ...

    def draw_rect(self, x: float, y: float, w: float, h: float, *,
                  line_width: float = 1, stroke: str = "#000000") -> None: ...

    def draw_line(self, x1: float, y1: float, x2: float, y2: float, *,
                  line_width: float = 1, stroke: str = "#000000") -> None: ...

    def new_page(self) -> None: ...

    @property
    def page_count(self) -> int: ...

    def finish(self) -> bytes: ...


def wrap_lines(text: str, width: Optional[float], font: str, size: float) -> List[str]:
    if not text:
        return []
    if width is None:
        return text.split("\n")
    return simpleSplit(text, font, size, width)


def truncate_with_ellipsis(line: str, width: float, font: str, size: float) -> str:
    while line and stringWidth(line + ELLIPSIS, font, size) > width:
        line = line[:-1]
    return line.rstrip() + ELLIPSIS


class ReportLabSurface:
    """Surface reportlab écrivant dans un tampon mémoire.

    Le compteur de pages démarre à 1 et chaque `new_page()` l'incrémente.
    """

    def __init__(self, page: PageConfig = PageConfig()):
        self.page = page
        self._buffer = BytesIO()
        self._canvas: Optional[Canvas] = None
        self._page_count = 0

    @property
    def page_count(self) -> int:
        return self._page_count

    def _c(self) -> Canvas:
        if self._canvas is None:
            raise DrawingSurfaceError("Document non initialisé : begin_document() requis")
        return self._canvas

    def begin_document(self, info: DocumentInfo = DocumentInfo()) -> None:
        try:
            self._canvas = Canvas(self._buffer, pagesize=(self.page.width, self.page.height))
            self._canvas.setTitle(info.title)
            self._canvas.setAuthor(info.author)
            self._canvas.setSubject(info.subject)
            self._canvas.setKeywords(info.keywords)
        except Exception as e:
            raise DrawingSurfaceError(f"Initialisation du document impossible : {e}") from e
        self._page_count = 1

    def measure_height(self, text, *, width, font=FONT, size=9, line_gap=0):
        lines = wrap_lines(text, width, font, size)
        return len(lines) * (size * LEADING_RATIO + line_gap)

    def draw_text(self, text, x, y, *, width=None, height=None, align="left", font=FONT,
                  size=9, color="#000000", line_gap=0):
        lines = wrap_lines(text, width, font, size)
        if not lines:
            return
        leading = size * LEADING_RATIO + line_gap
        if height is not None:
            max_lines = max(1, int(height // leading))
            if len(lines) > max_lines:
                lines = lines[:max_lines]
                lines[-1] = truncate_with_ellipsis(lines[-1], width or self.page.content_width, font, size)
        try:
            c = self._c()
            c.setFont(font, size)
            c.setFillColor(colors.HexColor(color))
            baseline = self.page.height - y - size
            for index, line in enumerate(lines):
                self._draw_line_of_text(c, line, x, baseline, width, align, font, size,
                                        last=index == len(lines) - 1)
                baseline -= leading
        except DrawingSurfaceError:
            raise
        except Exception as e:
            raise DrawingSurfaceError(f"Écriture du texte impossible : {e}") from e

    @staticmethod
    def _draw_line_of_text(c, line, x, baseline, width, align, font, size, last):
        if width is None or align == "left":
            c.drawString(x, baseline, line)
        elif align == "right":
            c.drawRightString(x + width, baseline, line)
        elif align == "center":
            c.drawCentredString(x + width / 2, baseline, line)
        elif align == "justify" and not last and line.count(" ") > 0:
            free = width - stringWidth(line, font, size)
            c.drawString(x, baseline, line, wordSpace=max(0, free / line.count(" ")))
        else:
            c.drawString(x, baseline, line)

    def draw_rect(self, x, y, w, h, *, line_width=1, stroke="#000000"):
        try:
            c = self._c()
            c.setLineWidth(line_width)
            c.setStrokeColor(colors.HexColor(stroke))
            c.rect(x, self.page.height - y - h, w, h, stroke=1, fill=0)
        except DrawingSurfaceError:
            raise
        except Exception as e:
            raise DrawingSurfaceError(f"Tracé du cadre impossible : {e}") from e

    def draw_line(self, x1, y1, x2, y2, *, line_width=1, stroke="#000000"):
        try:
            c = self._c()
            c.setLineWidth(line_width)
            c.setStrokeColor(colors.HexColor(stroke))
            c.line(x1, self.page.height - y1, x2, self.page.height - y2)
        except DrawingSurfaceError:
            raise
        except Exception as e:
            raise DrawingSurfaceError(f"Tracé de la ligne impossible : {e}") from e

    def new_page(self) -> None:
        try:
            self._c().showPage()
        except DrawingSurfaceError:
            raise
        except Exception as e:
            raise DrawingSurfaceError(f"Ajout de page impossible : {e}") from e
        self._page_count += 1

    def finish(self) -> bytes:
        try:
            self._c().save()
        except DrawingSurfaceError:
            raise
        except Exception as e:
            raise DrawingSurfaceError(f"Finalisation du PDF impossible : {e}") from e
        return self._buffer.getvalue()
