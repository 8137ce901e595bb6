from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    database: str
    blob_store: str
    timestamp: datetime
    environment: str
    version: str
