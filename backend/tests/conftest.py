import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from shipdocs.config import Settings
from shipdocs.database import Database
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.models.client import Client
from shipdocs.schemas.extraction import BolExtraction
from shipdocs.services.client_directory import ClientDirectory
from shipdocs.services.render_service import DocumentRenderer
from shipdocs.storage.blob_store import BlobStore
# Import all models so they register with Base.metadata for create_all
import shipdocs.models  # noqa: F401

SAMPLE_PDF = b"%PDF-1.4 fake bill of lading\n%%EOF"


def make_extraction(
    bol_number: str | None = "MEDU1234567",
    consignee: str | None = "Acme Corp",
    consignee_tax_id: str | None = "J-12345678-9",
    shipper: str | None = "Texas Worldwide Oil Services, LLC",
    date_of_issue: str | None = "10/01/2026",
    containers: int = 2,
    carrier_reference: str | None = None,
) -> BolExtraction:
    """Build an extraction the way the model would return it."""
    return BolExtraction.model_validate({
        "shipment_details": {
            "bol_number": bol_number,
            "booking_number": "BK-998877",
            "carrier_reference": carrier_reference,
            "vessel_name": "MSC AURORA",
            "voyage_number": "V-042",
            "port_of_loading": "Houston, TX",
            "port_of_discharge": "La Guaira, Venezuela",
            "date_of_issue": date_of_issue,
        },
        "parties": {
            "shipper": {"name": shipper, "address": "Houston, TX"},
            "consignee": {"name": consignee, "address": "Caracas", "tax_id": consignee_tax_id},
            "notify_party": {"name": consignee},
        },
        "containers": [
            {
                "container_number": f"MSCU00000{i}",
                "seal_number": f"SL{i}",
                "product": {"description": "1 container said to contain BASE OIL SN 150 in flexitank"},
                "quantity": {
                    "volume": {"liters": 20000.0, "gallons": 5283.44},
                    "weight": {"kg": 17500.5, "lbs": 38581.2},
                },
            }
            for i in range(1, containers + 1)
        ],
        "commercial": {"currency": "USD", "freight_terms": "PREPAID"},
    })


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        blob_root=str(tmp_path / "blobs"),
        anthropic_api_key="test-key",
    )


@pytest.fixture
async def database(test_settings):
    db = Database(test_settings.database_url)
    await db.connect()
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def blob_store(test_settings) -> BlobStore:
    return BlobStore(test_settings)


@pytest.fixture
def extractor():
    """Stands in for BolExtractor; tests set extract.return_value as needed."""
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=make_extraction())
    return mock


@pytest.fixture
def manager(blob_store, extractor) -> DocumentLifecycleManager:
    return DocumentLifecycleManager(blob_store, extractor, DocumentRenderer(), ClientDirectory())


async def add_client(database: Database, name: str, tax_id: str, address: str = "Av. Principal\nTorre A\nCaracas\nVenezuela") -> Client:
    async with database.session() as db:
        client = Client(id=uuid.uuid4(), name=name, tax_id=tax_id, address=address)
        db.add(client)
    return client


@pytest.fixture
async def acme(database) -> Client:
    return await add_client(database, "Acme Corp", "J-12345678-9")


@pytest.fixture
async def other_client(database) -> Client:
    return await add_client(database, "Other Inc", "J-99999999-0")


@pytest.fixture
async def bol(database, manager, acme):
    async with database.session() as db:
        return await manager.create_bol(db, acme.id, SAMPLE_PDF, "MEDU1234567.pdf", "application/pdf")


@pytest.fixture
async def client(database, blob_store, manager):
    from shipdocs.main import app

    app.state.database = database
    app.state.blob_store = blob_store
    app.state.lifecycle = manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
