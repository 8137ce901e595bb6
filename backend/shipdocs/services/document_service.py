import os
import re

from fastapi import UploadFile

from shipdocs.config import Settings
from shipdocs.errors import ValidationError
from shipdocs.schemas.extraction import BolExtraction

# Leading phrases carriers put in front of the cargo description
_LEADING_PHRASES = [
    re.compile(r"^\d+\s+containers?\s+said\s+to\s+contain\s+", re.IGNORECASE),
    re.compile(r"^\d+\s+containers?\s+containing\s+", re.IGNORECASE),
    re.compile(r"^said\s+to\s+contain\s+", re.IGNORECASE),
    re.compile(r"^containers?\s+with\s+", re.IGNORECASE),
    re.compile(r"^containers?\s+containing\s+", re.IGNORECASE),
    re.compile(r"^containing\s+", re.IGNORECASE),
    re.compile(r"^contents?:\s+", re.IGNORECASE),
]

# Checked in order, first hit wins
PACKAGING_TERMS = [
    "flexitank", "flexi tank", "flexi-tank",
    "iso tank", "isotank", "iso-tank",
    "drum", "drums", "barrel", "barrels",
    "container", "bulk", "ibc", "tote",
]

_PACKAGING_QTY = re.compile(
    r"^(\d+)\s+(?:flexi\s+tank|flexitank|flexi-tank|iso\s+tank|isotank|iso-tank|ibc|drum|barrel|container|bulk|tote)s?\b",
    re.IGNORECASE,
)

INLINE_CONTENT_TYPES = {"application/pdf", "image/png", "image/jpeg", "image/tiff"}


def get_file_extension(filename: str) -> str:
    """Extract the file extension without the dot, lowercased."""
    _, ext = os.path.splitext(filename)
    return ext.lstrip(".").lower()


def get_mime_type(filename: str) -> str:
    """Map file extension to MIME type."""
    ext = get_file_extension(filename)
    mime_map = {
        "pdf": "application/pdf",
        "png": "image/png",
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "tiff": "image/tiff",
        "tif": "image/tiff",
    }
    return mime_map.get(ext, "application/octet-stream")


async def read_upload(file: UploadFile, settings: Settings) -> tuple[bytes, str, str]:
    """Validate and read an uploaded file.

    Returns (content, filename, content_type).
    """
    if not file.filename:
        raise ValidationError("No filename provided")

    file_ext = get_file_extension(file.filename)
    if file_ext not in settings.allowed_file_types:
        raise ValidationError(
            f"File type '{file_ext}' not allowed. Allowed: {', '.join(sorted(settings.allowed_file_types))}",
            details={"file_name": file.filename},
        )

    content = await file.read()
    if len(content) > settings.max_upload_size_mb * 1024 * 1024:
        raise ValidationError(
            f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
            details={"file_name": file.filename, "size": len(content)},
        )
    if not content:
        raise ValidationError("Uploaded file is empty", details={"file_name": file.filename})

    return content, file.filename, get_mime_type(file.filename)


def content_disposition(file_name: str, content_type: str, *, download: bool = False) -> str:
    """Inline for PDFs and images unless a download is asked for, attachment otherwise."""
    safe_name = file_name.replace('"', "")
    if not download and content_type in INLINE_CONTENT_TYPES:
        return f'inline; filename="{safe_name}"'
    return f'attachment; filename="{safe_name}"'


def extract_product_and_packaging(description: str | None) -> tuple[str, str]:
    """Split a cargo description into (product, packaging).

    >>> extract_product_and_packaging("1 container said to contain BASE OIL SN 150 in flexitank")
    ('BASE OIL SN 150', 'Flexitank')
    """
    if not description:
        return "", ""

    cleaned = description
    for pattern in _LEADING_PHRASES:
        cleaned = pattern.sub("", cleaned)
    cleaned = cleaned.strip()

    product = cleaned
    packaging = ""
    for term in PACKAGING_TERMS:
        term_re = re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)
        if term_re.search(cleaned):
            packaging = term[0].upper() + term[1:].lower()
            product = term_re.sub("", cleaned, count=1).strip()
            product = re.sub(r"\s+in\s+a\s*$", "", product, flags=re.IGNORECASE)
            product = re.sub(r"\s+in\s*$", "", product, flags=re.IGNORECASE).strip()
            break

    if not packaging:
        match = re.search(r"\s+in\s+(\w+)$", cleaned, re.IGNORECASE)
        if match:
            packaging = match.group(1)
            product = cleaned[: match.start()].strip()

    return product, packaging


def packaging_quantity(description: str | None) -> int:
    """Count prefix such as "10 IBC", defaulting to one unit per container."""
    if not description:
        return 1
    match = _PACKAGING_QTY.match(description.strip())
    if match:
        return int(match.group(1)) or 1
    return 1


def build_items(extraction: BolExtraction) -> list[dict]:
    """Container line items stored on a BOL record."""
    items = []
    for index, container in enumerate(extraction.containers, start=1):
        description = container.product.description or container.product.name or ""
        product, packaging = extract_product_and_packaging(description)
        items.append({
            "item_number": index,
            "container_number": container.container_number or "",
            "seal": container.seal_number or "",
            "description": description,
            "product": product,
            "packaging": packaging,
            "packaging_quantity": packaging_quantity(description),
            "quantity": {
                "litros": f"{container.quantity.volume.liters:.2f}",
                "kg": f"{container.quantity.weight.kg:.3f}",
            },
        })
    return items


def build_bol_data(extraction: BolExtraction) -> dict:
    """Flatten an extraction into the stored bol_data section."""
    details = extraction.shipment_details
    parties = extraction.parties
    containers = extraction.containers

    def party(p) -> dict | None:
        return p.model_dump() if p is not None else None

    bol_data = {
        "bol_number": details.bol_number,
        "booking_number": details.booking_number or "",
        "shipper": parties.shipper.name if parties.shipper else "",
        "vessel": details.vessel_name or "",
        "voyage": details.voyage_number or "",
        "port_of_loading": details.port_of_loading or "",
        "port_of_discharge": details.port_of_discharge or "",
        "date_of_issue": details.date_of_issue or "",
        "shipment_date": details.shipment_date or "",
        "total_containers": str(len(containers)),
        "total_weight": {
            "kg": f"{sum(c.quantity.weight.kg for c in containers):.3f}",
            "lbs": f"{sum(c.quantity.weight.lbs for c in containers):.2f}",
        },
        "parties": {
            "shipper": party(parties.shipper),
            "consignee": party(parties.consignee),
            "notify_party": party(parties.notify_party),
        },
        "commercial": extraction.commercial.model_dump(),
    }
    # Absent until extracted or set by hand; "" means deliberately blank
    if details.carrier_reference is not None:
        bol_data["carrier_reference"] = details.carrier_reference
    return bol_data


def split_address(address: str | None) -> dict:
    """Client address lines as the packing list header expects them."""
    lines = (address or "").split("\n")
    lines += [""] * (4 - len(lines))
    return {
        "street": lines[0].strip(),
        "details": lines[1].strip(),
        "location": lines[2].strip(),
        "country": lines[3].strip(),
    }
