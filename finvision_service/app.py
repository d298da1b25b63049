"""FastAPI entry point for the FinVision service.

Endpoints:
- POST /api/auth/register, /api/auth/login       : Email/password auth (JWT)
- GET|PUT /api/user/profile                      : Storage provider settings
- GET|POST /api/transactions, PUT|DELETE /{id}   : Transaction CRUD
- GET  /api/transactions/{id}/document           : Stored document for preview
- GET  /api/transactions/export.csv              : CSV export
- GET|POST /api/documents                        : Document provenance records
- GET  /api/stats                                : Dashboard figures
- POST /api/analyze                              : Single-document extraction
- /api/uploads...                                : Per-user upload queue
- GET  /liveness, /readiness                     : Health checks
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any, cast

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from finvision_service.analytics import (
    category_breakdown,
    dashboard_stats,
    export_csv,
    filter_transactions,
    monthly_trend,
)
from finvision_service.auth import (
    Identity,
    create_access_token,
    get_identity,
    hash_password,
    is_public_path,
    require_secret_on_cloud_run,
    verify_password,
)
from finvision_service.config import (
    FINVISION_CORS_ALLOW_CREDENTIALS,
    FINVISION_CORS_ALLOW_HEADERS,
    FINVISION_CORS_ALLOW_METHODS,
    FINVISION_CORS_ALLOW_ORIGINS,
    FINVISION_MAX_BODY_BYTES,
)
from finvision_service.db import check_db_connection, close_pool, init_db, is_db_connected
from finvision_service.extraction import ExtractionError, analyze_document
from finvision_service.logging_config import (
    bind_request_id,
    generate_request_id,
    reset_request_id,
    setup_logging,
)
from finvision_service.models import (
    AnalyzeRequest,
    AuthResponse,
    DeleteResponse,
    DocumentRecord,
    ExtractionResult,
    HealthResponse,
    LoginRequest,
    PolicyUpdate,
    ProfileUpdate,
    QueueSnapshot,
    RegisterRequest,
    StatsResponse,
    TransactionDocument,
    TransactionRecord,
    TransactionSummary,
    TransactionUpdate,
    UserProfile,
)
from finvision_service.stores.document_store import DocumentStore
from finvision_service.stores.transaction_store import TransactionStore
from finvision_service.stores.user_store import UserStore
from finvision_service.uploads.errors import JobActiveError, JobNotFoundError, QueueBusyError
from finvision_service.uploads.sessions import UploadSessions
from finvision_service.uploads.types import SourceFile
from finvision_service.uploads.view import build_snapshot, can_change_policy, can_submit

logger = logging.getLogger(__name__)

_user_store = UserStore()
_doc_store = DocumentStore()
_tx_store = TransactionStore()
_sessions = UploadSessions(documents=_doc_store, transactions=_tx_store)

ANALYZE_FAILED_DETAIL = "Failed to process document"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: init pool on startup, close on shutdown."""
    setup_logging()
    require_secret_on_cloud_run()
    await init_db()
    logger.info("FinVision service started")
    yield
    await _sessions.close_all()
    await close_pool()
    logger.info("FinVision service stopped")


app = FastAPI(
    title="FinVision API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


if FINVISION_CORS_ALLOW_CREDENTIALS and "*" in FINVISION_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=FINVISION_CORS_ALLOW_ORIGINS,
    allow_credentials=FINVISION_CORS_ALLOW_CREDENTIALS,
    allow_methods=FINVISION_CORS_ALLOW_METHODS,
    allow_headers=FINVISION_CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > FINVISION_MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Auth middleware ----------------------------------------------------------


@app.middleware("http")
async def auth_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Enforce authentication on all non-public paths."""
    if request.method == "OPTIONS" or is_public_path(request.url.path):
        return await call_next(request)

    try:
        identity = await get_identity(request)
        request.state.identity = identity
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    except Exception as e:
        logger.warning("Auth middleware error: %s", e)
        return JSONResponse(status_code=401, content={"detail": "Authentication failed"})

    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    token = bind_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["x-request-id"] = request_id
    return response


def _get_identity(request: Request) -> Identity:
    """Dependency: extract identity from request state (set by middleware)."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return cast(Identity, identity)


CurrentIdentity = Annotated[Identity, Depends(_get_identity)]


def _profile(user: dict[str, Any]) -> UserProfile:
    return UserProfile(
        id=user["id"],
        name=user["name"],
        email=user["email"],
        gdrive_folder_id=user.get("gdrive_folder_id") or "",
        storage_provider=user.get("storage_provider") or "local",
    )


def _auth_response(user: dict[str, Any]) -> AuthResponse:
    token = create_access_token(user_id=user["id"], email=user["email"], name=user["name"])
    return AuthResponse(token=token, user=_profile(user))


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness() -> HealthResponse:
    if not is_db_connected():
        return HealthResponse(status="degraded", error="Running with in-memory storage")
    db_ok = await check_db_connection()
    if not db_ok:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return HealthResponse(status="ok")


# -- Auth ---------------------------------------------------------------------


@app.post("/api/auth/register", response_model=AuthResponse)
@limiter.limit("10/minute")
async def register(request: Request, body: RegisterRequest) -> AuthResponse:
    try:
        password_hash = hash_password(body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    user = await _user_store.create(
        email=str(body.email),
        password_hash=password_hash,
        name=body.name.strip(),
    )
    if user is None:
        raise HTTPException(status_code=400, detail="This email is already registered.")
    logger.info("Registered user %s", user["id"])
    return _auth_response(user)


@app.post("/api/auth/login", response_model=AuthResponse)
@limiter.limit("10/minute")
async def login(request: Request, body: LoginRequest) -> AuthResponse:
    user = await _user_store.get_by_email(str(body.email))
    if user is None or not verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=400, detail="Invalid credentials. Please try again.")
    return _auth_response(user)


# -- Profile ------------------------------------------------------------------


@app.get("/api/user/profile", response_model=UserProfile)
async def get_profile(identity: CurrentIdentity) -> UserProfile:
    user = await _user_store.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _profile(user)


@app.put("/api/user/profile", response_model=UserProfile)
async def update_profile(body: ProfileUpdate, identity: CurrentIdentity) -> UserProfile:
    user = await _user_store.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    provider = body.storage_provider or user.get("storage_provider") or "local"
    folder_id = (
        body.gdrive_folder_id.strip()
        if body.gdrive_folder_id is not None
        else user.get("gdrive_folder_id") or ""
    )
    if provider == "gdrive" and not folder_id:
        raise HTTPException(
            status_code=400, detail="A Google Drive folder id is required for gdrive storage"
        )

    updated = await _user_store.update_storage(
        identity.user_id, storage_provider=provider, gdrive_folder_id=folder_id
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _profile(updated)


# -- Transactions -------------------------------------------------------------


@app.get("/api/transactions", response_model=list[TransactionSummary])
async def list_transactions(identity: CurrentIdentity, q: str | None = None) -> list[TransactionSummary]:
    rows = await _tx_store.list_for_user(identity.user_id)
    return [TransactionSummary.model_validate(r) for r in filter_transactions(rows, q)]


@app.get("/api/transactions/export.csv", response_class=PlainTextResponse)
async def export_transactions(identity: CurrentIdentity, q: str | None = None) -> PlainTextResponse:
    rows = await _tx_store.list_for_user(identity.user_id)
    return PlainTextResponse(
        export_csv(filter_transactions(rows, q)),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="finvision-export.csv"'},
    )


@app.post("/api/transactions", response_model=TransactionSummary, status_code=201)
async def create_transaction(body: TransactionRecord, identity: CurrentIdentity) -> TransactionSummary:
    row = await _tx_store.create(identity.user_id, body)
    if row is None:
        raise HTTPException(status_code=409, detail="Transaction already exists")
    return TransactionSummary.model_validate(row)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionSummary)
async def update_transaction(
    transaction_id: str,
    body: TransactionUpdate,
    identity: CurrentIdentity,
) -> TransactionSummary:
    row = await _tx_store.update(identity.user_id, transaction_id, body.model_dump(exclude_unset=True))
    if row is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionSummary.model_validate(row)


@app.delete("/api/transactions/{transaction_id}", response_model=DeleteResponse)
async def delete_transaction(transaction_id: str, identity: CurrentIdentity) -> DeleteResponse:
    deleted = await _tx_store.delete(identity.user_id, transaction_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return DeleteResponse(deleted=True, id=transaction_id)


@app.get("/api/transactions/{transaction_id}/document", response_model=TransactionDocument)
async def get_transaction_document(transaction_id: str, identity: CurrentIdentity) -> TransactionDocument:
    row = await _tx_store.get(identity.user_id, transaction_id)
    if row is None or not row.get("document_data"):
        raise HTTPException(status_code=404, detail="Document not found")
    return TransactionDocument(
        transaction_id=row["id"],
        document_id=row["document_id"],
        document_data=row["document_data"],
        mime_type=row.get("mime_type"),
    )


# -- Documents ----------------------------------------------------------------


@app.get("/api/documents", response_model=list[DocumentRecord])
async def list_documents(identity: CurrentIdentity) -> list[DocumentRecord]:
    rows = await _doc_store.list_for_user(identity.user_id)
    return [DocumentRecord.model_validate(r) for r in rows]


@app.post("/api/documents", response_model=DocumentRecord, status_code=201)
async def create_document(body: DocumentRecord, identity: CurrentIdentity) -> DocumentRecord:
    row = await _doc_store.create(identity.user_id, body)
    if row is None:
        raise HTTPException(status_code=409, detail="Document already exists")
    return DocumentRecord.model_validate(row)


# -- Analytics ----------------------------------------------------------------


@app.get("/api/stats", response_model=StatsResponse)
async def stats(identity: CurrentIdentity, q: str | None = None) -> StatsResponse:
    rows = filter_transactions(await _tx_store.list_for_user(identity.user_id), q)
    return StatsResponse(
        stats=dashboard_stats(rows),
        monthly=monthly_trend(rows),
        categories=category_breakdown(rows),
    )


# -- Analyze ------------------------------------------------------------------


@app.post("/api/analyze", response_model=ExtractionResult)
@limiter.limit("10/minute")
async def analyze(
    request: Request,
    body: AnalyzeRequest,
    identity: CurrentIdentity,
) -> ExtractionResult:
    """Extract financial fields from one base64 document."""
    try:
        return await analyze_document(body.base64_data, body.mime_type, identity.name)
    except ExtractionError as e:
        logger.warning("Analyze failed for user %s: %s", identity.user_id, e)
        raise HTTPException(status_code=502, detail=ANALYZE_FAILED_DETAIL) from e


# -- Upload queue -------------------------------------------------------------


@app.get("/api/uploads", response_model=QueueSnapshot)
async def get_uploads(identity: CurrentIdentity) -> QueueSnapshot:
    return build_snapshot(_sessions.get_or_create(identity))


@app.post("/api/uploads", response_model=QueueSnapshot, status_code=202)
async def submit_uploads(
    identity: CurrentIdentity,
    files: Annotated[list[UploadFile], File()],
) -> QueueSnapshot:
    """Queue files for extraction; they are processed in the background."""
    queue = _sessions.get_or_create(identity)
    if not can_submit(queue):
        raise HTTPException(status_code=409, detail="Uploads are still processing")
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")

    sources = []
    for upload in files:
        data = await upload.read()
        sources.append(
            SourceFile.from_bytes(upload.filename or "upload", data, mime_type=upload.content_type)
        )
    queue.submit(sources)
    return build_snapshot(queue)


@app.put("/api/uploads/policy", response_model=QueueSnapshot)
async def update_upload_policy(body: PolicyUpdate, identity: CurrentIdentity) -> QueueSnapshot:
    queue = _sessions.get_or_create(identity)
    if not can_change_policy(queue):
        raise HTTPException(status_code=409, detail="Policy cannot change while processing")
    try:
        queue.set_batch_policy(body.policy)
    except QueueBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return build_snapshot(queue)


@app.delete("/api/uploads/{job_id}", response_model=DeleteResponse)
async def remove_upload(job_id: str, identity: CurrentIdentity) -> DeleteResponse:
    queue = _sessions.get(identity.user_id)
    if queue is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    try:
        queue.remove_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Upload not found") from e
    except JobActiveError as e:
        raise HTTPException(status_code=409, detail="Upload is being processed") from e
    return DeleteResponse(deleted=True, id=job_id)


@app.post("/api/uploads/clear", response_model=QueueSnapshot)
async def clear_uploads(identity: CurrentIdentity) -> QueueSnapshot:
    queue = _sessions.get_or_create(identity)
    removed = queue.clear_finished()
    logger.info("Cleared %d finished upload(s) for user %s", removed, identity.user_id)
    return build_snapshot(queue)


@app.delete("/api/uploads", response_model=DeleteResponse)
async def discard_uploads(identity: CurrentIdentity) -> DeleteResponse:
    discarded = await _sessions.discard(identity.user_id)
    return DeleteResponse(deleted=discarded, id=identity.user_id)
