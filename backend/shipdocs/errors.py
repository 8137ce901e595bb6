"""Error taxonomy for document operations.

Every public lifecycle/diagnostics operation either completes or raises one of
these. The API layer renders them as structured JSON with enough detail for an
operator to decide the next corrective action.
"""


class DocumentError(Exception):
    code = "document_error"
    http_status = 500

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ExtractionIncomplete(DocumentError):
    """Extraction ran but required fields are missing. Re-upload a clearer source."""

    code = "extraction_incomplete"
    http_status = 422


class ExtractionFailed(DocumentError):
    code = "extraction_failed"
    http_status = 502


class ClientMismatch(DocumentError):
    """Extracted consignee does not match the selected client. Never overridden."""

    code = "client_mismatch"
    http_status = 409


class ClientNotFound(DocumentError):
    code = "client_not_found"
    http_status = 404


class BolNotFound(DocumentError):
    code = "bol_not_found"
    http_status = 404


class DocumentNotFound(DocumentError):
    code = "document_not_found"
    http_status = 404


class FileNotFound(DocumentError):
    code = "file_not_found"
    http_status = 404


class DuplicateBolNumber(DocumentError):
    code = "duplicate_bol_number"
    http_status = 409


class ValidationError(DocumentError):
    code = "validation_error"
    http_status = 400


class RenderFailed(DocumentError):
    code = "render_failed"
    http_status = 500


class StoreUnavailable(DocumentError):
    code = "store_unavailable"
    http_status = 503
