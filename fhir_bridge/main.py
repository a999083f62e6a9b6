"""
FastAPI application entrypoint.

Run locally:  uvicorn fhir_bridge.main:app --reload
The transform engine binary is located via BRIDGE_BIN (see fhir_bridge/config.py).
"""

import logging

from fastapi import FastAPI

from fhir_bridge.api.routes import get_signing_service, router
from fhir_bridge.config import settings
from fhir_bridge.models.database import Base, engine

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s | %(name)s | %(message)s")

app = FastAPI(
    title="Kenya FHIR Bridge API",
    description=(
        "Transforms Kenyan clinic records into FHIR R4 transaction Bundles via the "
        "kenya-fhir-bridge engine, scores Bundles against a compliance rule set, "
        "batches transforms with per-file isolation, and serves HMAC-signed downloads."
    ),
    version="1.0.0",
)

app.include_router(router, prefix="/api/v1")


@app.on_event("startup")
def on_startup():
    # Refuse to start in production with the development signing secret
    get_signing_service()
    Base.metadata.create_all(bind=engine)
