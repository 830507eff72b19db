import json
import logging
import mimetypes
import os
import threading
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from . import accounts, companies, documents, messages, notifications, prompt_library, submissions
from .analysis import get_job, prepare_analysis, start_analysis_job
from .analysis_orchestrator import ensure_full_analysis_started
from .analysis_records import company_reports, investor_dashboard
from .auth import current_user, login, require_role, signup
from .constants import (
    CHUNK_SIZE,
    DEFAULT_DOWNLOAD_URL_TTL_SECONDS,
    MAX_REQUEST_BYTES,
    MAX_UPLOAD_BYTES,
    REPORTS_BUCKET,
)
from .documents import IncomingFile
from .extraction import extract_company_specs, extract_key_info
from .llm_client import truncate
from .models import (
    AnalysisRequest,
    CompanyFields,
    CreateJobResponse,
    DocumentUpdate,
    DownloadUrlRequest,
    DownloadUrlResponse,
    InvestorPreferences,
    InvestorSelection,
    JobStatusResponse,
    LoginRequest,
    MessageEmailRequest,
    ProfileUpdate,
    PromptCreate,
    PromptUpdate,
    ScreeningRequest,
    ScreeningResponse,
    SignupRequest,
    StatusUpdate,
    TokenResponse,
)
from .object_store import ObjectStore, build_object_store
from .screening import screen_company
from .storage import DuplicateRecordError, NotFoundError, RecordStore, build_record_store


logger = logging.getLogger("uvicorn.error")

MAX_SIGNED_URL_SECONDS = 7 * 24 * 3600

router = APIRouter()


def _fire_and_forget(fn, *args, **kwargs):
    """Run *fn* in a daemon thread so the HTTP response is closed before the
    LLM work begins; BackgroundTasks would hold the connection open."""
    t = threading.Thread(target=fn, args=args, kwargs=kwargs, daemon=True)
    t.start()


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


async def read_upload(
    upload: UploadFile,
    *,
    field_name: str,
    max_size_bytes: int = MAX_UPLOAD_BYTES,
) -> bytes:
    chunks: List[bytes] = []
    total_bytes = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        total_bytes += len(chunk)
        if total_bytes > max_size_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"{field_name} is too large. Max size is {max_size_bytes} bytes.",
            )
        chunks.append(chunk)

    await upload.close()
    if total_bytes == 0:
        raise HTTPException(status_code=400, detail=f"{field_name} file is empty.")
    return b"".join(chunks)


async def _incoming_files(
    uploads: List[UploadFile],
    *,
    document_name: Optional[str] = None,
    description: Optional[str] = None,
) -> List[IncomingFile]:
    incoming = []
    for upload in uploads:
        filename = upload.filename or "document"
        incoming.append(
            IncomingFile(
                filename=filename,
                content_type=upload.content_type,
                data=await read_upload(upload, field_name=filename),
                document_name=document_name if len(uploads) == 1 else None,
                description=description,
            )
        )
    return incoming


def _ensure_company_access(record_store: RecordStore, user: dict, company_id: str) -> dict:
    company = companies.get_company(record_store, company_id)
    if user["user_type"] == "founder":
        if (company.get("email_1") or "").strip().lower() != user["email"].lower():
            raise PermissionError("You do not have access to this company.")
    return company


def _error_handler(status_code: int):
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        detail = truncate(str(exc).strip("'\"")) or exc.__class__.__name__
        if status_code >= 500:
            logger.warning("request_failed path=%s status=%s error=%s", request.url.path, status_code, detail)
        return JSONResponse(status_code=status_code, content={"detail": detail})

    return handle


@router.get("/health")
def health(request: Request) -> dict:
    return {
        "status": "ok",
        "storage": request.app.state.record_store.storage_name,
        "object_storage": request.app.state.object_store.storage_name,
    }


@router.post("/api/auth/signup", response_model=TokenResponse)
def signup_user(payload: SignupRequest, record_store: RecordStore = Depends(get_record_store)) -> dict:
    return signup(record_store, **payload.model_dump())


@router.post("/api/auth/login", response_model=TokenResponse)
def login_user(payload: LoginRequest, record_store: RecordStore = Depends(get_record_store)) -> dict:
    try:
        return login(record_store, email=payload.email, password=payload.password)
    except PermissionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@router.get("/api/auth/me")
def me(user: dict = Depends(current_user)) -> dict:
    return user


@router.get("/api/account")
def read_account(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    return accounts.get_profile(record_store, user)


@router.put("/api/account")
def write_account(
    payload: ProfileUpdate,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    return accounts.update_profile(record_store, user, payload.model_dump(exclude_unset=True))


@router.get("/api/companies")
def get_companies(
    order: str = "name",
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return {"companies": companies.list_companies(record_store, order)}


@router.post("/api/companies")
def post_company(
    payload: CompanyFields,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    company, created = companies.create_company(record_store, payload.model_dump(exclude_unset=True))
    return {"company": company, "existing": not created}


@router.get("/api/companies/{company_id}")
def get_company(
    company_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    return _ensure_company_access(record_store, user, company_id)


@router.patch("/api/companies/{company_id}")
def patch_company(
    company_id: str,
    payload: CompanyFields,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return companies.update_company(record_store, company_id, payload.model_dump(exclude_unset=True))


@router.put("/api/companies/{company_id}/status")
def put_company_status(
    company_id: str,
    payload: StatusUpdate,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return companies.set_status(record_store, company_id, payload.status)


@router.get("/api/companies/{company_id}/documents")
def get_company_documents(
    company_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    _ensure_company_access(record_store, user, company_id)
    return {"documents": documents.list_documents(record_store, company_id)}


@router.post("/api/companies/{company_id}/documents")
async def post_company_documents(
    company_id: str,
    files: List[UploadFile] = File(...),
    document_name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> dict:
    _ensure_company_access(record_store, user, company_id)
    incoming = await _incoming_files(files, document_name=document_name, description=description)
    uploaded = await run_in_threadpool(documents.upload_documents, record_store, object_store, company_id, incoming)
    return {"documents": uploaded}


@router.patch("/api/documents/{document_id}")
def patch_document(
    document_id: str,
    payload: DocumentUpdate,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return documents.update_document(record_store, document_id, **payload.model_dump(exclude_unset=True))


@router.delete("/api/documents/{document_id}")
def remove_document(
    document_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> dict:
    require_role(user, "investor")
    documents.delete_document(record_store, object_store, document_id)
    return {"deleted": True}


@router.post("/api/documents/{document_id}/key-info")
def post_document_key_info(
    document_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> dict:
    require_role(user, "investor")
    return extract_key_info(record_store, object_store, document_id)


@router.post("/api/founder/submissions")
async def post_founder_submission(
    company: str = Form(...),
    files: List[UploadFile] = File(...),
    description: Optional[str] = Form(None),
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> dict:
    require_role(user, "founder")
    try:
        fields = CompanyFields.model_validate(json.loads(company))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid company payload: {exc}") from exc
    company_fields = fields.model_dump(exclude_none=True)
    company_fields.setdefault("email_1", user["email"])

    incoming = await _incoming_files(files, description=description)
    return await run_in_threadpool(
        submissions.submit_company,
        record_store,
        object_store,
        company_fields,
        incoming,
    )


@router.get("/api/founder/companies")
def get_founder_companies(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "founder")
    return {"companies": companies.founder_companies(record_store, user["email"])}


@router.get("/api/investors")
def get_investors(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    return {"investors": accounts.list_active_investors(record_store)}


@router.post("/api/companies/{company_id}/investors")
def post_company_investors(
    company_id: str,
    payload: InvestorSelection,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "founder")
    _ensure_company_access(record_store, user, company_id)
    created = submissions.select_investors(record_store, company_id, payload.investor_user_ids)
    return {"created": created}


@router.get("/api/investor/preferences")
def get_preferences(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return {"preferences": accounts.get_investor_preferences(record_store, user)}


@router.put("/api/investor/preferences")
def put_preferences(
    payload: InvestorPreferences,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    preferences = accounts.upsert_investor_preferences(record_store, user, payload.model_dump(exclude_unset=True))
    return {"preferences": preferences}


@router.get("/api/dashboard")
def get_dashboard(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return {"companies": investor_dashboard(record_store, user["id"])}


@router.get("/api/companies/{company_id}/reports")
def get_company_reports(
    company_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    companies.get_company(record_store, company_id)
    return {"reports": company_reports(record_store, company_id)}


@router.get("/api/prompts")
def get_prompts(
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return {"prompts": prompt_library.list_prompts(record_store)}


@router.post("/api/prompts")
def post_prompt(
    payload: PromptCreate,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return prompt_library.create_prompt(record_store, **payload.model_dump())


@router.patch("/api/prompts/{prompt_id}")
def patch_prompt(
    prompt_id: str,
    payload: PromptUpdate,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    return prompt_library.update_prompt(record_store, prompt_id, **payload.model_dump(exclude_unset=True))


@router.delete("/api/prompts/{prompt_id}")
def remove_prompt(
    prompt_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    require_role(user, "investor")
    prompt_library.delete_prompt(record_store, prompt_id)
    return {"deleted": True}


@router.post("/api/screenings", response_model=ScreeningResponse)
def post_screening(
    payload: ScreeningRequest,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> dict:
    require_role(user, "investor")
    return screen_company(
        record_store,
        object_store,
        company_id=payload.company_id,
        investor_user_id=user["id"],
        analysis_id=payload.analysis_id,
    )


@router.post("/api/analyses", response_model=CreateJobResponse)
def post_analysis(
    payload: AnalysisRequest,
    request: Request,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> CreateJobResponse:
    require_role(user, "investor")
    plan = prepare_analysis(
        record_store,
        company_id=payload.company_id,
        analysis_type=payload.analysis_type,
        investor_user_id=user["id"],
        analysis_id=payload.analysis_id,
        prompt=payload.prompt,
        document_ids=payload.document_ids,
    )
    job, started = start_analysis_job(
        record_store,
        object_store,
        request.app.state.run_in_background,
        plan,
        user["id"],
    )
    logger.info("job_id=%s analysis_requested type=%s started=%s", job["id"], plan.analysis_type, started)
    return CreateJobResponse(job_id=job["id"], status=job["status"])


@router.post("/api/analyses/{analysis_id}/full", response_model=CreateJobResponse)
def post_full_analysis(
    analysis_id: str,
    request: Request,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
) -> CreateJobResponse:
    require_role(user, "investor")
    job, _ = ensure_full_analysis_started(
        record_store,
        object_store,
        request.app.state.run_in_background,
        analysis_id=analysis_id,
        investor_user_id=user["id"],
    )
    return CreateJobResponse(job_id=job["id"], status=job["status"])


@router.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
def get_job_status(
    job_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> JobStatusResponse:
    job = get_job(record_store, job_id)
    if job["requested_by"] != user["id"] and user["user_type"] != "admin":
        raise PermissionError("This job belongs to another user.")
    return JobStatusResponse(
        job_id=job["id"],
        kind=job["kind"],
        status=job["status"],
        progress=job["progress"] or 0,
        company_id=job.get("company_id"),
        analysis_id=job.get("analysis_id"),
        analysis_type=job.get("analysis_type"),
        result=job.get("result"),
        error=job.get("error"),
    )


@router.post("/api/pitch-decks/extract")
async def post_pitch_deck_extract(
    deck: UploadFile = File(...),
    user: dict = Depends(current_user),
) -> dict:
    data = await read_upload(deck, field_name="deck")
    specs = await run_in_threadpool(extract_company_specs, deck.filename or "deck", data)
    return {"company": specs}


@router.get("/api/companies/{company_id}/messages")
def get_company_messages(
    company_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    _ensure_company_access(record_store, user, company_id)
    return {"messages": messages.company_messages(record_store, company_id)}


@router.post("/api/messages/{message_id}/read")
def post_message_read(
    message_id: str,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    message = record_store.get("messages", message_id)
    if message is None:
        raise NotFoundError("Message not found.")
    if message.get("company_id"):
        _ensure_company_access(record_store, user, message["company_id"])
    return messages.mark_read(record_store, message_id)


@router.post("/api/messages/email")
def post_message_email(
    payload: MessageEmailRequest,
    user: dict = Depends(current_user),
    record_store: RecordStore = Depends(get_record_store),
) -> dict:
    if payload.company_id:
        _ensure_company_access(record_store, user, payload.company_id)
    return notifications.send_message_email(
        record_store,
        user,
        message_title=payload.message_title,
        message_detail=payload.message_detail,
        company_name=payload.company_name,
        company_id=payload.company_id,
    )


@router.post("/api/reports/download-url", response_model=DownloadUrlResponse)
def post_download_url(
    payload: DownloadUrlRequest,
    user: dict = Depends(current_user),
    object_store: ObjectStore = Depends(get_object_store),
) -> DownloadUrlResponse:
    file_path = (payload.file_path or "").strip()
    if not file_path:
        raise ValueError("file_path is required")
    expires_in = payload.expires_in or DEFAULT_DOWNLOAD_URL_TTL_SECONDS
    if not 0 < expires_in <= MAX_SIGNED_URL_SECONDS:
        raise ValueError(f"expires_in must be between 1 and {MAX_SIGNED_URL_SECONDS} seconds.")
    if not object_store.exists(REPORTS_BUCKET, file_path):
        raise FileNotFoundError(f"Report not found: {file_path}")
    signed_url = object_store.create_signed_url(REPORTS_BUCKET, file_path, expires_in)
    logger.info("user_id=%s download_url_issued path=%s expires_in=%s", user["id"], file_path, expires_in)
    return DownloadUrlResponse(signed_url=signed_url, expires_in=expires_in)


@router.get("/api/storage/{bucket}/{object_path:path}")
def get_signed_object(
    bucket: str,
    object_path: str,
    token: str,
    object_store: ObjectStore = Depends(get_object_store),
) -> Response:
    verify = getattr(object_store, "verify_signed_path", None)
    if verify is None:
        raise NotFoundError("Signed links are served by the storage provider.")
    verify(bucket, object_path, token)
    data = object_store.download_bytes(bucket, object_path)
    media_type = mimetypes.guess_type(object_path)[0] or "application/octet-stream"
    headers = {"Content-Disposition": f'inline; filename="{Path(object_path).name}"'}
    return Response(content=data, media_type=media_type, headers=headers)


def create_app(
    record_store: Optional[RecordStore] = None,
    object_store: Optional[ObjectStore] = None,
) -> FastAPI:
    app = FastAPI(title="Pitch Fork Backend")
    app.state.record_store = record_store if record_store is not None else build_record_store()
    app.state.object_store = object_store if object_store is not None else build_object_store()
    app.state.run_in_background = _fire_and_forget
    prompt_library.seed_default_prompts(app.state.record_store)

    frontend_origins = os.getenv(
        "FRONTEND_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def enforce_upload_size(request, call_next):
        if request.method in ("POST", "PUT", "PATCH") and request.url.path.startswith("/api/"):
            content_length = request.headers.get("content-length")
            if content_length:
                try:
                    if int(content_length) > MAX_REQUEST_BYTES:
                        return JSONResponse(
                            status_code=413,
                            content={"detail": f"Request too large. Max size is {MAX_REQUEST_BYTES} bytes."},
                        )
                except ValueError:
                    pass
        return await call_next(request)

    # Handlers resolve by exception MRO, so subclasses map before their bases.
    app.add_exception_handler(DuplicateRecordError, _error_handler(409))
    app.add_exception_handler(FileExistsError, _error_handler(409))
    app.add_exception_handler(FileNotFoundError, _error_handler(404))
    app.add_exception_handler(PermissionError, _error_handler(403))
    app.add_exception_handler(NotFoundError, _error_handler(404))
    app.add_exception_handler(ValueError, _error_handler(400))
    app.add_exception_handler(RuntimeError, _error_handler(502))

    app.include_router(router)

    frontend_dir = Path(__file__).resolve().parents[2] / "frontend"
    if frontend_dir.exists():
        app.mount("/", StaticFiles(directory=str(frontend_dir), html=True), name="frontend")

    logger.info(
        "app_created record_store=%s object_store=%s",
        app.state.record_store.storage_name,
        app.state.object_store.storage_name,
    )
    return app
