import io

import pdfplumber
import pytest
from fpdf import FPDF

from shipdocs.errors import RenderFailed
from shipdocs.models.document import DocumentType
from shipdocs.services.document_service import build_bol_data, build_items
from shipdocs.services.render_service import DocumentRenderer, page_count
from conftest import make_extraction


def render_context(**sections) -> dict:
    extraction = make_extraction(containers=3)
    return {
        "bol_data": build_bol_data(extraction),
        "items": build_items(extraction),
        "client": {"name": "Acme Corp", "tax_id": "J-12345678-9", "address": "Av. Principal\nCaracas"},
        **sections,
    }


def pdf_text(data: bytes) -> str:
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def test_render_packing_list():
    data = DocumentRenderer().render(
        DocumentType.PL,
        render_context(packing_list_data={
            "document_number": "MEDU1234567-PL-1",
            "date": "10/01/2026",
            "po_number": "PO-9",
            "address": {"company": "Acme Corp", "street": "Av. Principal", "location": "Caracas"},
        }),
    )

    assert data.startswith(b"%PDF")
    assert page_count(data) == 1
    text = pdf_text(data)
    assert "PACKING LIST" in text
    assert "MEDU1234567-PL-1" in text
    assert "MSCU000003" in text


def test_render_certificate_of_origin():
    data = DocumentRenderer().render(
        DocumentType.COO,
        render_context(coo_data={
            "certificate_number": "MEDU1234567-COO",
            "date_of_issue": "10/01/2026",
            "importer_info": {"name": "Acme Corp", "address": "Caracas", "tax_id": "J-12345678-9"},
            "product_info": [
                {"description": "BASE OIL SN 150", "hs_code": "2710.19.30", "origin": "USA",
                 "quantity": {"value": 20000.0, "unit": "L"}},
            ],
        }),
    )

    text = pdf_text(data)
    assert "CERTIFICATE OF ORIGIN" in text
    assert "2710.19.30" in text
    assert "Texas Worldwide Oil Services" in text


def test_render_keeps_existing_page_size():
    a4 = FPDF(unit="pt", format="A4")
    a4.add_page()
    existing = bytes(a4.output())

    data = DocumentRenderer().render(DocumentType.PL, render_context(packing_list_data={}), existing)

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        assert round(float(pdf.pages[0].width)) == 595
        assert round(float(pdf.pages[0].height)) == 842


def test_render_defaults_to_letter_for_unreadable_existing():
    data = DocumentRenderer().render(DocumentType.PL, render_context(packing_list_data={}), b"not a pdf")

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        assert round(float(pdf.pages[0].width)) == 612


def test_render_replaces_non_latin_text():
    context = render_context(packing_list_data={"document_number": "PL-1", "po_number": "Café ☕ 注文"})
    assert page_count(DocumentRenderer().render(DocumentType.PL, context)) == 1


def test_render_rejects_uploaded_types():
    with pytest.raises(RenderFailed):
        DocumentRenderer().render(DocumentType.BOL, render_context())


def test_page_count_rejects_garbage():
    with pytest.raises(RenderFailed):
        page_count(b"definitely not a pdf")
