from __future__ import annotations

import asyncio
import zipfile
from dataclasses import dataclass
from io import BytesIO

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

QR_SIZE = 50 * mm
ACCENT = colors.HexColor("#4a90e2")


@dataclass(frozen=True)
class CertificateArtifact:
    certificate_id: int
    serial_number: str
    claim_url: str


@dataclass(frozen=True)
class BatchStyle:
    name: str
    description: str
    font_color: str | None = None
    bg_color: str | None = None


def _color(value: str | None, fallback):
    if not value:
        return fallback
    if len(value) == 4 and value.startswith("#"):
        # #abc -> #aabbcc
        value = "#" + "".join(ch * 2 for ch in value[1:])
    try:
        return colors.HexColor(value)
    except ValueError:
        return fallback


def _qr_drawing(data: str, size: float) -> Drawing:
    widget = QrCodeWidget(data)
    x1, y1, x2, y2 = widget.getBounds()
    w, h = x2 - x1, y2 - y1
    d = Drawing(size, size, transform=[size / w, 0, 0, size / h, 0, 0])
    d.add(widget)
    return d


def render_certificate_pdf(item: CertificateArtifact, style: BatchStyle) -> bytes:
    buf = BytesIO()
    width, height = A4
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Certificate {item.certificate_id}")

    c.setFillColor(_color(style.bg_color, colors.HexColor("#fdfdfd")))
    c.rect(0, 0, width, height, stroke=0, fill=1)

    c.setStrokeColor(ACCENT)
    c.setLineWidth(5)
    c.rect(15 * mm, 15 * mm, width - 30 * mm, height - 30 * mm, stroke=1, fill=0)
    c.setStrokeColor(colors.HexColor("#dcdcdc"))
    c.setLineWidth(3)
    c.rect(20 * mm, 20 * mm, width - 40 * mm, height - 40 * mm, stroke=1, fill=0)

    text_color = _color(style.font_color, colors.HexColor("#333333"))

    c.setFillColor(text_color)
    c.setFont("Times-Roman", 28)
    c.drawCentredString(width / 2, height - 40 * mm, "Certificate of Authenticity")

    c.setFillColor(ACCENT)
    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, height - 70 * mm, f"Name: {style.name}")

    c.setFillColor(text_color)
    c.setFont("Helvetica-Oblique", 13)
    y = height - 88 * mm
    for line in simpleSplit(f"Description: {style.description}", "Helvetica-Oblique", 13, width - 60 * mm):
        c.drawCentredString(width / 2, y, line)
        y -= 16

    c.setFillColor(colors.HexColor("#666666"))
    c.setFont("Helvetica", 12)
    c.drawCentredString(width / 2, y - 10 * mm, f"ID: {item.certificate_id}")
    c.drawCentredString(width / 2, y - 17 * mm, f"Serial: {item.serial_number}")

    renderPDF.draw(_qr_drawing(item.claim_url, QR_SIZE), c, (width - QR_SIZE) / 2, 95 * mm)

    c.setStrokeColor(colors.HexColor("#dcdcdc"))
    c.setLineWidth(2)
    c.line(20 * mm, 37 * mm, width - 20 * mm, 37 * mm)

    c.setFillColor(colors.HexColor("#999999"))
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, 28 * mm, "Scan the code to claim ownership of this certificate.")

    c.showPage()
    c.save()
    return buf.getvalue()


def _zip_documents(documents: list[bytes]) -> bytes:
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for index, doc in enumerate(documents, start=1):
            zf.writestr(f"certificate{index}.pdf", doc)
    # archive is finalized once the ZipFile is closed
    return buf.getvalue()


def _render_batch(items: list[CertificateArtifact], style: BatchStyle) -> bytes:
    return _zip_documents([render_certificate_pdf(item, style) for item in items])


async def build_batch_archive(items: list[CertificateArtifact], style: BatchStyle) -> bytes:
    """One PDF per certificate, bundled in a single zip. Rendering runs off the event loop."""
    return await asyncio.to_thread(_render_batch, list(items), style)
