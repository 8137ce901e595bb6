from fastapi import APIRouter

from shipdocs.api.v1 import audit, clients, diagnostics, documents, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(clients.router, prefix="/v1/clients", tags=["clients"])
api_router.include_router(documents.router, prefix="/v1/documents", tags=["documents"])
api_router.include_router(diagnostics.router, prefix="/v1/diagnostics", tags=["diagnostics"])
api_router.include_router(audit.router, prefix="/v1/audit", tags=["audit"])
