"""
Client directory and consignee-to-client identity matching.

The matching functions are pure so the lifecycle manager can run the check
before anything is written, and so they can be tested without a database.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.errors import ClientNotFound, ValidationError
from shipdocs.models.client import Client
from shipdocs.models.document import ShipmentDocument
from shipdocs.schemas.client import ClientCreate

logger = logging.getLogger("shipdocs.clients")

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_WHITESPACE = re.compile(r"\s+")

# Rank order, best first
MATCH_EXACT = "exact"
MATCH_TAX_ID = "tax_id"
MATCH_SUBSTRING = "substring"
_RANK = {MATCH_EXACT: 0, MATCH_TAX_ID: 1, MATCH_SUBSTRING: 2}


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    value = _PUNCTUATION.sub("", value.lower())
    return _WHITESPACE.sub(" ", value).strip()


@dataclass
class ClientCandidate:
    client: Client
    reason: str
    score: float


def _name_match(detected: str, candidate: str) -> tuple[str, float] | None:
    if not detected or not candidate:
        return None
    if detected == candidate:
        return MATCH_EXACT, 1.0
    if detected in candidate or candidate in detected:
        shorter, longer = sorted((detected, candidate), key=len)
        ratio = len(shorter) / len(longer)
        return MATCH_SUBSTRING, ratio
    return None


def match_clients(
    consignee_name: str | None,
    consignee_tax_id: str | None,
    clients: list[Client],
    min_ratio: float = 0.5,
) -> list[ClientCandidate]:
    """Clients that could be the consignee, best match first.

    A client matches on equal normalised names, on a substring relation where
    the shorter name is at least ``min_ratio`` of the longer, or on equal
    normalised tax ids when both sides have one. Names that are substrings
    of each other but too different in length reject the client outright,
    without consulting the tax id.
    """
    detected_name = normalize_text(consignee_name)
    detected_tax = normalize_text(consignee_tax_id)

    candidates: list[ClientCandidate] = []
    for client in clients:
        hit = _name_match(detected_name, normalize_text(client.name))
        if hit is not None and hit[0] == MATCH_SUBSTRING and hit[1] < min_ratio:
            continue
        if hit is None:
            client_tax = normalize_text(client.tax_id)
            if detected_tax and client_tax and detected_tax == client_tax:
                hit = (MATCH_TAX_ID, 1.0)
        if hit is not None:
            candidates.append(ClientCandidate(client=client, reason=hit[0], score=hit[1]))

    candidates.sort(key=lambda c: (_RANK[c.reason], -c.score))
    return candidates


class ClientDirectory:
    def __init__(self, min_ratio: float = 0.5):
        self.min_ratio = min_ratio

    async def find_by_id(self, db: AsyncSession, client_id: uuid.UUID) -> Client | None:
        return await db.get(Client, client_id)

    async def get(self, db: AsyncSession, client_id: uuid.UUID) -> Client:
        client = await self.find_by_id(db, client_id)
        if client is None:
            raise ClientNotFound(f"Client {client_id} not found", details={"client_id": str(client_id)})
        return client

    async def find_all(self, db: AsyncSession) -> list[Client]:
        result = await db.execute(select(Client).order_by(Client.name))
        return list(result.scalars().all())

    async def create(self, db: AsyncSession, data: ClientCreate) -> Client:
        existing = await db.execute(select(Client).where(Client.tax_id == data.tax_id))
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(
                f"A client with tax id {data.tax_id} already exists", details={"tax_id": data.tax_id}
            )
        client = Client(id=uuid.uuid4(), **data.model_dump())
        db.add(client)
        await db.flush()
        logger.info("Created client %s (%s)", client.id, client.name)
        return client

    async def touch_last_document_date(
        self, db: AsyncSession, client_id: uuid.UUID, when: datetime
    ) -> None:
        client = await self.find_by_id(db, client_id)
        if client is None:
            logger.warning("Cannot touch last_document_date: client %s does not exist", client_id)
            return
        client.last_document_date = when
        await db.flush()

    async def recompute_last_document_date(self, db: AsyncSession, client_id: uuid.UUID) -> datetime | None:
        """Reset last_document_date to the newest remaining document, or None."""
        client = await self.find_by_id(db, client_id)
        if client is None:
            return None
        result = await db.execute(
            select(func.max(ShipmentDocument.created_at)).where(ShipmentDocument.client_id == client_id)
        )
        client.last_document_date = result.scalar_one_or_none()
        await db.flush()
        return client.last_document_date

    def match(self, consignee_name: str | None, consignee_tax_id: str | None, clients: list[Client]):
        return match_clients(consignee_name, consignee_tax_id, clients, self.min_ratio)
