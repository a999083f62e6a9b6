"""
FastAPI routes – the main API surface.

Demonstrates:
- RESTful endpoint design with status codes as the contract
  (200/422 for compliance, 400 for malformed input, 500 for engine failure)
- Dependency injection (database session, transform gateway, signer)
- Multipart uploads for XML records and batches
- Signed, non-cacheable downloads
- Error responses that never echo request content
"""

from __future__ import annotations

import base64
import json
import logging
import os
import shutil
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from fhir_bridge.config import settings
from fhir_bridge.etl.batch import BatchFile, BatchOrchestrator, BatchSubmissionError
from fhir_bridge.etl.gateway import InputFormat, TransformError, TransformGateway
from fhir_bridge.models.database import get_db
from fhir_bridge.schemas.api import (
    BatchResult,
    HealthResponse,
    SubmissionResult,
    ValidationResult,
    VerifyResponse,
)
from fhir_bridge.services.audit import log_action, record_batch_run
from fhir_bridge.services.shr_client import SHRClient
from fhir_bridge.services.signing import ALGORITHM, SigningService, canonical_json
from fhir_bridge.services.validation import validate_bundle

logger = logging.getLogger(__name__)

router = APIRouter()

ACTOR = "api_user"
FHIR_JSON_UTF8 = "application/fhir+json; charset=utf-8"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_gateway() -> TransformGateway:
    return TransformGateway.from_settings()


@lru_cache(maxsize=1)
def get_signing_service() -> SigningService:
    return SigningService(settings.DOWNLOAD_SECRET, settings.ENVIRONMENT)


def get_shr_client() -> SHRClient:
    return SHRClient(settings.AFYALINK_BASE_URL, settings.AFYALINK_TOKEN)


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

async def _json_body(request: Request, detail: str = "Invalid JSON body") -> Any:
    try:
        return json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=400, detail=detail) from None


async def _bundle_body(request: Request) -> dict[str, Any]:
    document = await _json_body(request)
    if not isinstance(document, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return document


async def _form(request: Request) -> FormData:
    try:
        return await request.form()
    except Exception:
        raise HTTPException(status_code=400, detail="Malformed multipart body") from None


def _audit(
    db: Session, action: str, outcome: str, detail: dict[str, Any] | None = None
) -> None:
    """Write and commit one audit row. Blocking; async handlers run it in the threadpool."""
    log_action(
        db, actor=ACTOR, action=action, resource_type="Bundle", outcome=outcome, detail=detail
    )
    db.commit()


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(
    db: Session = Depends(get_db),
    gateway: TransformGateway = Depends(get_gateway),
    signer: SigningService = Depends(get_signing_service),
):
    """Health endpoint – DB connectivity, engine presence, signing key status."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        logger.exception("Database health check failed")
        db_status = "disconnected"

    binary = gateway.command[0]
    engine_found = shutil.which(binary) is not None or os.path.isfile(binary)
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
        transform_engine="available" if engine_found else "missing",
        signing_secret="development-default" if signer.uses_default_secret else "configured",
    )


# ---------------------------------------------------------------------------
# Compliance validation
# ---------------------------------------------------------------------------

@router.post(
    "/validate",
    response_model=ValidationResult,
    responses={422: {"model": ValidationResult}},
)
async def validate(request: Request, db: Session = Depends(get_db)):
    """Score a Bundle. 200 when it has no errors, 422 with the same body otherwise."""
    document = await _bundle_body(request)
    result = validate_bundle(document)

    await run_in_threadpool(
        _audit,
        db,
        "validate",
        "success" if result.valid else "failure",
        {"score": result.score, "issues": len(result.issues)},
    )

    if not result.valid:
        return JSONResponse(status_code=422, content=result.model_dump())
    return result


# ---------------------------------------------------------------------------
# Single-record transforms
# ---------------------------------------------------------------------------

async def _transform(
    content: bytes, fmt: InputFormat, gateway: TransformGateway, db: Session
) -> dict[str, Any]:
    try:
        bundle = await gateway.transform_bundle(content, fmt)
    except TransformError as exc:
        await run_in_threadpool(_audit, db, "transform", "failure", {"format": fmt.value})
        raise HTTPException(status_code=500, detail=str(exc)) from None

    await run_in_threadpool(_audit, db, "transform", "success", {"format": fmt.value})
    return bundle


@router.post("/transform")
async def transform(
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransformGateway = Depends(get_gateway),
):
    """Transform a Kenyan clinic JSON record into a FHIR R4 Bundle."""
    record = await _json_body(request)
    return await _transform(json.dumps(record).encode("utf-8"), InputFormat.JSON, gateway, db)


@router.post("/transform-xml")
async def transform_xml(
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransformGateway = Depends(get_gateway),
):
    """Transform a Kenyan clinic XML upload (multipart field ``file``)."""
    form = await _form(request)
    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        raise HTTPException(status_code=400, detail="Expected a 'file' field with an XML upload")

    content = await upload.read()
    if b"<" not in content:
        raise HTTPException(status_code=400, detail="Uploaded file does not appear to be XML")
    return await _transform(content, InputFormat.XML, gateway, db)


# ---------------------------------------------------------------------------
# Batch transforms
# ---------------------------------------------------------------------------

@router.post("/batch", response_model=BatchResult)
async def batch(
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransformGateway = Depends(get_gateway),
):
    """
    Transform up to 20 uploaded records (multipart field ``files``).
    One failing file never fails the request.
    """
    form = await _form(request)
    files = []
    for value in form.getlist("files"):
        if isinstance(value, UploadFile):
            files.append(BatchFile(filename=value.filename or "(unnamed)", content=await value.read()))
        else:
            files.append(BatchFile(filename="(unknown)", content=None))

    started_at = datetime.now(timezone.utc)
    start = time.perf_counter()
    try:
        result = await BatchOrchestrator(gateway).run(files)
    except BatchSubmissionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None

    await run_in_threadpool(
        _audit_batch, db, result, started_at, (time.perf_counter() - start) * 1000
    )
    return result


def _audit_batch(
    db: Session, result: BatchResult, started_at: datetime, duration_ms: float
) -> None:
    record_batch_run(db, result, started_at=started_at, duration_ms=duration_ms)
    _audit(
        db,
        "batch",
        "success" if result.failed == 0 else "failure",
        {"succeeded": result.succeeded, "failed": result.failed},
    )


# ---------------------------------------------------------------------------
# Signed download / verification
# ---------------------------------------------------------------------------

def _download_response(document: Any, signer: SigningService, db: Session) -> Response:
    """Sign and audit a download. Blocking; call it from a sync route or the threadpool."""
    try:
        canonical = canonical_json(document)
    except ValueError:
        raise HTTPException(status_code=400, detail="Bundle contains NaN or Infinity") from None
    signature = signer.sign(canonical)
    filename = f"fhir-bundle-{int(time.time() * 1000)}.json"

    _audit(db, "download", "success", {"algorithm": ALGORITHM})

    return Response(
        content=canonical,
        media_type=FHIR_JSON_UTF8,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Bundle-Signature": signature,
            "X-Bundle-Algorithm": ALGORITHM,
            "Cache-Control": "no-store",
        },
    )


@router.post("/download")
async def download(
    request: Request,
    db: Session = Depends(get_db),
    signer: SigningService = Depends(get_signing_service),
):
    """Sign the Bundle in the request body and return it as a file download."""
    document = await _json_body(request, detail="Invalid request body")
    return await run_in_threadpool(_download_response, document, signer, db)


@router.get("/download")
def download_from_query(
    bundle: str | None = None,
    db: Session = Depends(get_db),
    signer: SigningService = Depends(get_signing_service),
):
    """Same as POST /download, with the Bundle as a base64url query parameter."""
    if not bundle:
        raise HTTPException(status_code=400, detail="Missing bundle parameter")
    try:
        raw = base64.urlsafe_b64decode(bundle + "=" * (-len(bundle) % 4))
        document = json.loads(raw.decode("utf-8"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid bundle data") from None
    return _download_response(document, signer, db)


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    request: Request,
    x_bundle_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    signer: SigningService = Depends(get_signing_service),
):
    """Check a downloaded Bundle body against its X-Bundle-Signature header."""
    if not x_bundle_signature:
        raise HTTPException(status_code=400, detail="Missing X-Bundle-Signature header")
    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Invalid request body") from None

    valid = signer.verify(body, x_bundle_signature)
    await run_in_threadpool(_audit, db, "verify", "success" if valid else "failure")
    return VerifyResponse(valid=valid)


# ---------------------------------------------------------------------------
# SHR submission
# ---------------------------------------------------------------------------

@router.post("/submit", response_model=SubmissionResult)
async def submit(
    request: Request,
    db: Session = Depends(get_db),
    client: SHRClient = Depends(get_shr_client),
):
    """Forward a Bundle to the AfyaLink SHR (mocked when no token is configured)."""
    document = await _bundle_body(request)
    result = await client.submit(document)

    await run_in_threadpool(
        _audit,
        db,
        "submit",
        "success" if result.success else "failure",
        {"status": result.status, "live": result.live},
    )
    return result
