import base64
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
from PIL import Image

from shipdocs.config import Settings
from shipdocs.errors import ExtractionFailed
from shipdocs.schemas.extraction import BolExtraction
from shipdocs.services.claude_service import MAX_IMAGE_DIMENSION, BolExtractor, _parse_json_response


def make_mock_settings() -> Settings:
    return Settings(
        anthropic_api_key="test-key",
        claude_model="claude-sonnet-4-20250514",
        claude_max_tokens=4096,
        database_url="sqlite+aiosqlite:///test.db",
    )


SAMPLE_EXTRACTION = {
    "shipment_details": {
        "bol_number": "MEDU1234567",
        "booking_number": "BK-998877",
        "carriersReference": "CR-42",
        "vessel_name": "MSC AURORA",
        "voyage_number": "V-042",
        "port_of_loading": "Houston, TX",
        "port_of_discharge": "La Guaira, Venezuela",
        "date_of_issue": "10/01/2026",
    },
    "parties": {
        "shipper": {"name": "Texas Worldwide Oil Services, LLC", "address": "Houston, TX"},
        "consignee": {"name": "Acme Corp", "address": "Caracas", "tax_id": "J-12345678-9"},
        "notify_party": {"name": "Acme Corp"},
    },
    "containers": [
        {
            "container_number": "MSCU0000001",
            "seal_number": "SL1",
            "product": {"description": "BASE OIL SN 150 in flexitank"},
            "quantity": {"volume": {"liters": 20000}, "weight": {"kg": 17500.5}},
        }
    ],
    "commercial": {"currency": "USD", "freight_terms": "PREPAID"},
}


def make_mock_message(content_text: str):
    """Create a mock Anthropic message response."""
    mock_content = MagicMock()
    mock_content.text = content_text
    mock_message = MagicMock()
    mock_message.content = [mock_content]
    return mock_message


def make_png(width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color="white").save(buf, format="PNG")
    return buf.getvalue()


def test_parse_json_response_strips_fences():
    assert _parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}
    assert _parse_json_response('{"a": 1}') == {"a": 1}


def test_parse_json_response_rejects_prose():
    with pytest.raises(ExtractionFailed, match="not valid JSON"):
        _parse_json_response("I could not read this document.")


@pytest.mark.asyncio
async def test_extract_pdf_sends_document_block():
    service = BolExtractor(make_mock_settings())

    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = make_mock_message(json.dumps(SAMPLE_EXTRACTION))
        result = await service.extract(b"%PDF-1.4 bol", "application/pdf")

    assert isinstance(result, BolExtraction)
    assert result.shipment_details.bol_number == "MEDU1234567"
    assert result.parties.consignee.tax_id == "J-12345678-9"
    assert result.containers[0].quantity.volume.liters == 20000

    call_kwargs = mock_create.call_args.kwargs
    assert call_kwargs["model"] == "claude-sonnet-4-20250514"
    assert call_kwargs["temperature"] == 0
    block = call_kwargs["messages"][0]["content"][0]
    assert block["type"] == "document"
    assert base64.standard_b64decode(block["source"]["data"]) == b"%PDF-1.4 bol"


@pytest.mark.asyncio
async def test_extract_normalizes_carrier_reference_key():
    service = BolExtractor(make_mock_settings())

    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = make_mock_message(json.dumps(SAMPLE_EXTRACTION))
        result = await service.extract(b"%PDF-1.4 bol", "application/pdf")

    assert result.shipment_details.carrier_reference == "CR-42"


@pytest.mark.asyncio
async def test_extract_handles_markdown_wrapped_json():
    service = BolExtractor(make_mock_settings())

    wrapped = f"```json\n{json.dumps(SAMPLE_EXTRACTION)}\n```"
    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = make_mock_message(wrapped)
        result = await service.extract(b"%PDF-1.4 bol", "application/pdf")

    assert result.shipment_details.bol_number == "MEDU1234567"


@pytest.mark.asyncio
async def test_extract_downscales_large_images():
    service = BolExtractor(make_mock_settings())

    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = make_mock_message(json.dumps(SAMPLE_EXTRACTION))
        await service.extract(make_png(4000, 1000), "image/png")

    block = mock_create.call_args.kwargs["messages"][0]["content"][0]
    assert block["type"] == "image"
    assert block["source"]["media_type"] == "image/png"
    sent = Image.open(io.BytesIO(base64.standard_b64decode(block["source"]["data"])))
    assert max(sent.size) == MAX_IMAGE_DIMENSION
    assert sent.size == (2048, 512)


@pytest.mark.asyncio
async def test_extract_rejects_unsupported_type():
    service = BolExtractor(make_mock_settings())
    with pytest.raises(ExtractionFailed, match="Unsupported"):
        await service.extract(b"col1,col2", "text/csv")


@pytest.mark.asyncio
async def test_extract_wraps_api_errors():
    service = BolExtractor(make_mock_settings())
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))

    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = error
        with pytest.raises(ExtractionFailed, match="Extraction service error"):
            await service.extract(b"%PDF-1.4 bol", "application/pdf")


@pytest.mark.asyncio
async def test_extract_rejects_wrong_structure():
    service = BolExtractor(make_mock_settings())

    with patch.object(service.client.messages, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = make_mock_message(json.dumps({"containers": "not a list"}))
        with pytest.raises(ExtractionFailed, match="expected structure"):
            await service.extract(b"%PDF-1.4 bol", "application/pdf")
