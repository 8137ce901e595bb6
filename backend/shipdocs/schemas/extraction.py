"""Pydantic schemas for Bill of Lading extraction output.

Every field is optional at the schema level: the model is asked for a fixed
JSON structure but may leave parts out. Required-field checks happen in the
lifecycle manager so they can raise ExtractionIncomplete with context.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Party(_Lenient):
    name: str | None = Field(None, description="Company or person name")
    address: str | None = Field(None, description="Full address")
    tax_id: str | None = Field(None, description="Tax id / RIF / EIN")


class ShipmentDetails(_Lenient):
    bol_number: str | None = Field(None, description="Bill of Lading number")
    booking_number: str | None = None
    carrier_reference: str | None = None
    vessel_name: str | None = None
    voyage_number: str | None = None
    port_of_loading: str | None = None
    port_of_discharge: str | None = None
    date_of_issue: str | None = Field(None, description="MM/DD/YYYY as printed")
    shipment_date: str | None = None
    total_containers: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fix_carrier_reference_key(cls, data):
        # The model regularly answers with "carriers_reference"
        if isinstance(data, dict):
            for wrong in ("carriers_reference", "carriersReference"):
                if wrong in data and data.get("carrier_reference") is None:
                    data = {**data, "carrier_reference": data[wrong]}
        return data


class Parties(_Lenient):
    shipper: Party | None = None
    consignee: Party | None = None
    notify_party: Party | None = None


class ContainerProduct(_Lenient):
    name: str | None = None
    description: str | None = None
    hs_code: str | None = None


class ContainerVolume(_Lenient):
    liters: float = 0.0
    gallons: float = 0.0


class ContainerWeight(_Lenient):
    kg: float = 0.0
    lbs: float = 0.0
    mt: float = 0.0


class ContainerQuantity(_Lenient):
    volume: ContainerVolume = Field(default_factory=ContainerVolume)
    weight: ContainerWeight = Field(default_factory=ContainerWeight)


class Container(_Lenient):
    container_number: str | None = None
    seal_number: str | None = None
    type: str | None = None
    product: ContainerProduct = Field(default_factory=ContainerProduct)
    quantity: ContainerQuantity = Field(default_factory=ContainerQuantity)


class Commercial(_Lenient):
    currency: str | None = None
    freight_terms: str | None = None
    itn_number: str | None = None


class BolExtraction(_Lenient):
    shipment_details: ShipmentDetails = Field(default_factory=ShipmentDetails)
    parties: Parties = Field(default_factory=Parties)
    containers: list[Container] = Field(default_factory=list)
    commercial: Commercial = Field(default_factory=Commercial)
