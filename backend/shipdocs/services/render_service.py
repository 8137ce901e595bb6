"""
PDF rendering for generated shipment documents.

Packing Lists and Certificates of Origin are laid out with fpdf2 from the
stored record data. When the document being replaced is passed in, its page
size is kept so a regenerated file matches the one it supersedes.
"""

import io
import logging

import pdfplumber
from fpdf import FPDF, FPDFException
from fpdf.enums import XPos, YPos

from shipdocs.errors import RenderFailed
from shipdocs.models.document import DocumentType

logger = logging.getLogger("shipdocs.render")

# US Letter in points
DEFAULT_PAGE_SIZE = (612.0, 792.0)
MARGIN = 48

EXPORTER = {
    "name": "Texas Worldwide Oil Services, LLC",
    "address": "6300 N Main Rd, Houston, TX 77009, USA",
    "tax_id": "38-4120041",
}


def _text(value) -> str:
    """Core fonts are latin-1 only."""
    if value is None:
        return ""
    return str(value).encode("latin-1", "replace").decode("latin-1")


def page_count(pdf_bytes: bytes) -> int:
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            return len(pdf.pages)
    except Exception as e:
        raise RenderFailed(f"Could not read PDF: {e}") from e


def _page_size(existing_blob: bytes | None) -> tuple[float, float]:
    if not existing_blob:
        return DEFAULT_PAGE_SIZE
    try:
        with pdfplumber.open(io.BytesIO(existing_blob)) as pdf:
            first = pdf.pages[0]
            return float(first.width), float(first.height)
    except Exception as e:
        logger.warning("Could not read page size from existing document, using Letter: %s", e)
        return DEFAULT_PAGE_SIZE


class DocumentRenderer:
    def render(self, document_type: DocumentType, data: dict, existing_blob: bytes | None = None) -> bytes:
        """Render a generated document.

        Args:
            document_type: PL or COO.
            data: Record sections the layout reads: ``bol_data``, ``items``,
                ``client`` and either ``packing_list_data`` or ``coo_data``.
            existing_blob: Current payload of the document being replaced, if any.

        Raises:
            RenderFailed: unsupported type or layout error.
        """
        renderers = {
            DocumentType.PL: self._render_packing_list,
            DocumentType.COO: self._render_certificate,
        }
        renderer = renderers.get(document_type)
        if renderer is None:
            raise RenderFailed(
                f"Cannot render documents of type {document_type.value}",
                details={"type": document_type.value},
            )

        pdf = FPDF(unit="pt", format=_page_size(existing_blob))
        pdf.set_margins(MARGIN, MARGIN)
        pdf.set_auto_page_break(auto=True, margin=MARGIN)
        pdf.add_page()
        try:
            renderer(pdf, data)
            output = bytes(pdf.output())
        except (FPDFException, KeyError, TypeError, ValueError) as e:
            logger.error("Rendering %s failed: %s", document_type.value, e)
            raise RenderFailed(f"Failed to render {document_type.value}: {e}") from e

        logger.info("Rendered %s (%d bytes)", document_type.value, len(output))
        return output

    @staticmethod
    def _title(pdf: FPDF, title: str) -> None:
        pdf.set_font("Helvetica", "B", 18)
        pdf.cell(0, 24, title, align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(8)

    @staticmethod
    def _field(pdf: FPDF, label: str, value) -> None:
        pdf.set_font("Helvetica", "B", 9)
        pdf.cell(110, 14, _text(label))
        pdf.set_font("Helvetica", "", 9)
        pdf.cell(0, 14, _text(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    @staticmethod
    def _section(pdf: FPDF, title: str) -> None:
        pdf.ln(6)
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 16, title, border="B", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(4)

    @staticmethod
    def _table(pdf: FPDF, headers: list[str], widths: list[float], rows: list[list]) -> None:
        pdf.set_font("Helvetica", "B", 8)
        pdf.set_fill_color(242, 242, 242)
        for header, width in zip(headers, widths):
            pdf.cell(width, 16, header, border=1, fill=True)
        pdf.ln()
        pdf.set_font("Helvetica", "", 8)
        for row in rows:
            for value, width in zip(row, widths):
                pdf.cell(width, 14, _text(value)[:48], border=1)
            pdf.ln()

    def _render_packing_list(self, pdf: FPDF, data: dict) -> None:
        bol = data.get("bol_data") or {}
        pl = data.get("packing_list_data") or {}
        client = data.get("client") or {}
        items = data.get("items") or []

        self._title(pdf, "PACKING LIST")
        self._field(pdf, "Document No:", pl.get("document_number"))
        self._field(pdf, "Date:", pl.get("date"))
        self._field(pdf, "Client PO No:", pl.get("po_number"))
        self._field(pdf, "BOL No:", bol.get("bol_number"))

        self._section(pdf, "Ship To")
        address = pl.get("address") or {}
        pdf.set_font("Helvetica", "", 9)
        lines = [address.get("company") or client.get("name")]
        lines += [address.get(k) for k in ("street", "details", "location", "country")]
        for line in filter(None, lines):
            pdf.cell(0, 13, _text(line), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        if client.get("tax_id"):
            self._field(pdf, "RIF:", client["tax_id"])

        self._section(pdf, "Shipment")
        self._field(pdf, "Vessel / Voyage:", f"{bol.get('vessel', '')} {bol.get('voyage', '')}".strip())
        self._field(pdf, "Port of Loading:", bol.get("port_of_loading"))
        self._field(pdf, "Port of Discharge:", bol.get("port_of_discharge"))

        self._section(pdf, "Items")
        rows = [
            [
                item.get("item_number"),
                item.get("container_number"),
                item.get("seal"),
                item.get("product") or item.get("description"),
                f"{item.get('packaging_quantity', 1)} {item.get('packaging') or ''}".strip(),
                (item.get("quantity") or {}).get("litros"),
                (item.get("quantity") or {}).get("kg"),
            ]
            for item in items
        ]
        self._table(
            pdf,
            ["#", "Container", "Seal", "Product", "Packaging", "Liters", "Kg"],
            [24, 82, 66, 150, 70, 62, 62],
            rows,
        )

        total_weight = bol.get("total_weight") or {}
        pdf.ln(6)
        self._field(pdf, "Total Weight (kg):", total_weight.get("kg"))
        self._field(pdf, "Total Weight (lbs):", total_weight.get("lbs"))

    def _render_certificate(self, pdf: FPDF, data: dict) -> None:
        bol = data.get("bol_data") or {}
        coo = data.get("coo_data") or {}
        exporter = coo.get("exporter_info") or EXPORTER
        importer = coo.get("importer_info") or {}

        self._title(pdf, "CERTIFICATE OF ORIGIN")
        self._field(pdf, "Certificate No:", coo.get("certificate_number"))
        self._field(pdf, "Date of Issue:", coo.get("date_of_issue"))
        self._field(pdf, "BOL No:", bol.get("bol_number"))

        self._section(pdf, "Exporter")
        self._field(pdf, "Name:", exporter.get("name"))
        self._field(pdf, "Address:", exporter.get("address"))
        self._field(pdf, "Tax ID:", exporter.get("tax_id"))

        self._section(pdf, "Importer")
        self._field(pdf, "Name:", importer.get("name"))
        pdf.set_font("Helvetica", "", 9)
        pdf.multi_cell(0, 13, _text(importer.get("address")), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self._field(pdf, "RIF:", importer.get("tax_id"))

        self._section(pdf, "Goods")
        rows = [
            [
                product.get("description"),
                product.get("hs_code"),
                product.get("origin"),
                f"{(product.get('quantity') or {}).get('value', '')} {(product.get('quantity') or {}).get('unit', '')}",
            ]
            for product in coo.get("product_info") or []
        ]
        self._table(pdf, ["Description", "HS Code", "Origin", "Quantity"], [250, 90, 80, 96], rows)

        pdf.ln(18)
        pdf.set_font("Helvetica", "", 9)
        pdf.multi_cell(
            0,
            13,
            "The undersigned hereby certifies that the goods described above originate "
            "in the United States of America.",
            new_x=XPos.LMARGIN,
            new_y=YPos.NEXT,
        )
