"""Named field updates for shipment documents.

Each operation names exactly one field in one data section and the document
type it applies to. Requests pick an operation through the ``op`` tag, so an
unknown or misspelt field is rejected at validation time instead of being
written as a new key.

Values are kept exactly as sent: ``""`` is stored as an empty string and is
distinct from a key that was never set.
"""

from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, Field

from shipdocs.models.document import DocumentType


class _FieldUpdate(BaseModel):
    section: ClassVar[str]
    key: ClassVar[str]
    applies_to: ClassVar[DocumentType]

    value: str

    @property
    def path(self) -> str:
        return f"{self.section}.{self.key}"


class SetCarrierReference(_FieldUpdate):
    section: ClassVar[str] = "bol_data"
    key: ClassVar[str] = "carrier_reference"
    applies_to: ClassVar[DocumentType] = DocumentType.BOL

    op: Literal["set_carrier_reference"] = "set_carrier_reference"


class SetBolDate(_FieldUpdate):
    section: ClassVar[str] = "bol_data"
    key: ClassVar[str] = "date_of_issue"
    applies_to: ClassVar[DocumentType] = DocumentType.BOL

    op: Literal["set_bol_date"] = "set_bol_date"


class SetBookingNumber(_FieldUpdate):
    section: ClassVar[str] = "bol_data"
    key: ClassVar[str] = "booking_number"
    applies_to: ClassVar[DocumentType] = DocumentType.BOL

    op: Literal["set_booking_number"] = "set_booking_number"


class SetPoNumber(_FieldUpdate):
    section: ClassVar[str] = "packing_list_data"
    key: ClassVar[str] = "po_number"
    applies_to: ClassVar[DocumentType] = DocumentType.PL

    op: Literal["set_po_number"] = "set_po_number"


class SetPackingListNumber(_FieldUpdate):
    section: ClassVar[str] = "packing_list_data"
    key: ClassVar[str] = "document_number"
    applies_to: ClassVar[DocumentType] = DocumentType.PL

    op: Literal["set_packing_list_number"] = "set_packing_list_number"


class SetPackingListDate(_FieldUpdate):
    section: ClassVar[str] = "packing_list_data"
    key: ClassVar[str] = "date"
    applies_to: ClassVar[DocumentType] = DocumentType.PL

    op: Literal["set_packing_list_date"] = "set_packing_list_date"


class SetCertificateDate(_FieldUpdate):
    section: ClassVar[str] = "coo_data"
    key: ClassVar[str] = "date_of_issue"
    applies_to: ClassVar[DocumentType] = DocumentType.COO

    op: Literal["set_certificate_date"] = "set_certificate_date"


FieldUpdate = Annotated[
    Union[
        SetCarrierReference,
        SetBolDate,
        SetBookingNumber,
        SetPoNumber,
        SetPackingListNumber,
        SetPackingListDate,
        SetCertificateDate,
    ],
    Field(discriminator="op"),
]


class FieldUpdateRequest(BaseModel):
    updates: list[FieldUpdate] = Field(..., min_length=1)
