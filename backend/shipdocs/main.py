import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shipdocs import __version__
from shipdocs.api.router import api_router
from shipdocs.config import settings
from shipdocs.database import Database
from shipdocs.errors import DocumentError
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.middleware.logging import RequestLoggingMiddleware
from shipdocs.services.claude_service import BolExtractor
from shipdocs.services.client_directory import ClientDirectory
from shipdocs.services.render_service import DocumentRenderer
from shipdocs.storage.blob_store import BlobStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)

logger = logging.getLogger("shipdocs.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Sentry if DSN is configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.environment,
            )
            logger.info("Sentry initialized (env=%s)", settings.environment)
        except Exception as e:
            logger.warning("Failed to initialize Sentry: %s", e)

    database = Database(settings.database_url, echo=settings.database_echo)
    await database.connect()
    blob_store = BlobStore(settings)

    app.state.database = database
    app.state.blob_store = blob_store
    app.state.lifecycle = DocumentLifecycleManager(
        blob_store,
        BolExtractor(settings),
        DocumentRenderer(),
        ClientDirectory(settings.client_match_min_length_ratio),
    )

    logger.info("Starting shipdocs backend (env=%s, blobs=%s)", settings.environment, blob_store.root)
    yield
    await database.dispose()
    logger.info("Shutting down shipdocs backend")


app = FastAPI(
    title="Shipdocs - Shipment Document Service",
    description="Bill of Lading intake, derived shipping documents, and storage diagnostics",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    log = logger.error if exc.http_status >= 500 else logger.warning
    log("[%s] %s %s -> %s: %s %s", request_id, request.method, request.url.path, exc.code, exc.message, exc.details)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix="/api")
