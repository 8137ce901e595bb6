"""
Claude extraction adapter for Bills of Lading.

Turns a raw BOL (PDF or image) into a BolExtraction. PDFs go to Claude as a
base64 document block; images are downscaled with Pillow and sent as an image
block. Timeout and retry policy live on the AsyncAnthropic client, configured
from settings.
"""

import base64
import io
import json
import logging

import anthropic
from PIL import Image
from pydantic import ValidationError as PydanticValidationError

from shipdocs.config import Settings
from shipdocs.errors import ExtractionFailed
from shipdocs.schemas.extraction import BolExtraction

logger = logging.getLogger("shipdocs.claude")

# Max image dimension before resizing (Claude vision has limits)
MAX_IMAGE_DIMENSION = 2048

EXTRACTION_SYSTEM_PROMPT = """You are a logistics document parser specializing in ocean Bills of Lading (BOL).

Extract every field you can find. Use null for fields that are not present. Keep dates exactly as printed (MM/DD/YYYY when possible). Include ALL containers listed on every page; never truncate the container list.

Respond with valid JSON only, no additional text."""

BOL_SCHEMA = """{
  "shipment_details": {
    "bol_number": "string",
    "booking_number": "string or null",
    "carrier_reference": "string or null",
    "vessel_name": "string or null",
    "voyage_number": "string or null",
    "port_of_loading": "string or null",
    "port_of_discharge": "string or null",
    "date_of_issue": "MM/DD/YYYY or null",
    "shipment_date": "MM/DD/YYYY or null",
    "total_containers": "string or null"
  },
  "parties": {
    "shipper": {"name": "string", "address": "string or null", "tax_id": "string or null"},
    "consignee": {"name": "string", "address": "string or null", "tax_id": "string or null"},
    "notify_party": {"name": "string or null", "address": "string or null"}
  },
  "containers": [{
    "container_number": "string",
    "seal_number": "string or null",
    "type": "string or null",
    "product": {"name": "string or null", "description": "string", "hs_code": "string or null"},
    "quantity": {
      "volume": {"liters": 0, "gallons": 0},
      "weight": {"kg": 0, "lbs": 0, "mt": 0}
    }
  }],
  "commercial": {"currency": "string or null", "freight_terms": "string or null", "itn_number": "string or null"}
}"""


def _parse_json_response(response_text: str) -> dict:
    """Parse JSON from Claude response, handling markdown code blocks."""
    text = response_text.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    try:
        return json.loads(text)
    except (json.JSONDecodeError, IndexError) as e:
        logger.error("Failed to parse Claude response as JSON: %s", e)
        raise ExtractionFailed(f"Claude response was not valid JSON: {e}") from e


def _prepare_image(data: bytes) -> str:
    """Downscale an image if needed and return it base64-encoded as PNG."""
    with Image.open(io.BytesIO(data)) as img:
        if max(img.size) > MAX_IMAGE_DIMENSION:
            ratio = MAX_IMAGE_DIMENSION / max(img.size)
            new_size = (int(img.size[0] * ratio), int(img.size[1] * ratio))
            img = img.resize(new_size, Image.Resampling.LANCZOS)

        img_bytes = io.BytesIO()
        img.save(img_bytes, format="PNG")

    return base64.standard_b64encode(img_bytes.getvalue()).decode("utf-8")


def _build_content(data: bytes, mime_type: str, prompt: str) -> list[dict]:
    """Build Claude message content: the document block followed by the prompt."""
    if mime_type == "application/pdf":
        source_block = {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.standard_b64encode(data).decode("utf-8"),
            },
        }
    elif mime_type.startswith("image/"):
        try:
            encoded = _prepare_image(data)
        except (OSError, ValueError) as e:
            raise ExtractionFailed(f"Could not read image for extraction: {e}") from e
        source_block = {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": encoded},
        }
    else:
        raise ExtractionFailed(f"Unsupported document type for extraction: {mime_type}")

    return [source_block, {"type": "text", "text": prompt}]


class BolExtractor:
    def __init__(self, settings: Settings):
        self.client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.claude_timeout_seconds,
            max_retries=settings.claude_max_retries,
        )
        self.model = settings.claude_model
        self.max_tokens = settings.claude_max_tokens

    async def extract(self, data: bytes, mime_type: str) -> BolExtraction:
        """Extract shipment fields from a raw BOL.

        Args:
            data: Raw file bytes.
            mime_type: "application/pdf" or an image/* type.

        Returns:
            BolExtraction, possibly with missing fields.

        Raises:
            ExtractionFailed: API error, unsupported input, or unparseable output.
        """
        prompt = (
            "Extract all structured information from this Bill of Lading into the "
            f"following JSON structure:\n\n{BOL_SCHEMA}"
        )
        content = _build_content(data, mime_type, prompt)

        logger.info("Extracting BOL (%s, %d bytes) with %s", mime_type, len(data), self.model)
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                system=EXTRACTION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as e:
            logger.error("Claude extraction call failed: %s", e)
            raise ExtractionFailed(f"Extraction service error: {e}") from e

        result = _parse_json_response(message.content[0].text)

        try:
            extraction = BolExtraction.model_validate(result)
        except PydanticValidationError as e:
            logger.error("Claude extraction did not match the BOL schema: %s", e)
            raise ExtractionFailed("Extraction result did not match the expected structure") from e

        logger.info(
            "Extracted BOL %s: %d containers, consignee=%s",
            extraction.shipment_details.bol_number,
            len(extraction.containers),
            extraction.parties.consignee.name if extraction.parties.consignee else None,
        )
        return extraction
