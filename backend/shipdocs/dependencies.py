from fastapi import Request

from shipdocs.database import get_db
from shipdocs.diagnostics.service import DiagnosticsService
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.services.client_directory import ClientDirectory
from shipdocs.storage.blob_store import BlobStore

# Re-export get_db for use in Depends()
get_db = get_db


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_lifecycle_manager(request: Request) -> DocumentLifecycleManager:
    return request.app.state.lifecycle


def get_client_directory(request: Request) -> ClientDirectory:
    return request.app.state.lifecycle.clients


def get_diagnostics_service(request: Request) -> DiagnosticsService:
    return DiagnosticsService(request.app.state.blob_store, request.app.state.lifecycle)
