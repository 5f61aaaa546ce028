import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from admin import (
    RegistrationFilters,
    bulk_action,
    delete_registration,
    export_rows,
    filter_registrations,
    list_registrations,
    to_csv,
    update_registration,
)
from attachments import ATTACHMENT_LIMITS, Attachment
from database import close_db
from errors import NotFoundError, PortalError, UpstreamError
from mailer import Mailer
from repository import RegistrationRepository, build_repository
from schemas import BulkActionRequest, CheckEmailRequest, SendMailRequest, SendWelcomeRequest, SmtpTestRequest
from storage import ObjectStoreGateway, build_object_store
from submission import SubmissionWorkflow
from validation import validation_rules

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("registration_portal")

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_db()


app = FastAPI(title="Registration Portal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address, default_limits=[lambda: config.RATE_LIMIT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

SECURITY_HEADERS = {
    "Content-Security-Policy": "; ".join([
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://cdnjs.cloudflare.com",
        "font-src 'self' https://fonts.gstatic.com https://cdnjs.cloudflare.com",
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net https://cdnjs.cloudflare.com",
        "img-src 'self' data: https:",
        "connect-src 'self'",
        "frame-src 'none'",
        "object-src 'none'",
    ]),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# Dependencies

@lru_cache
def get_repository() -> RegistrationRepository:
    return build_repository()


@lru_cache
def get_object_store() -> ObjectStoreGateway:
    return build_object_store()


def get_workflow(repository: RegistrationRepository = Depends(get_repository),
                 store: ObjectStoreGateway = Depends(get_object_store)) -> SubmissionWorkflow:
    return SubmissionWorkflow(repository, store)


def get_mailer(repository: RegistrationRepository = Depends(get_repository)) -> Mailer:
    return Mailer(repository)


def require_admin_key(x_api_key: Optional[str] = Header(None)):
    # open when ADMIN_API_KEY is unset
    if config.ADMIN_API_KEY and x_api_key != config.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key")


# Error handlers

def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if isinstance(exc, UpstreamError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return failure(exc.status_code, exc.message)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}")
    return failure(429, "Too many requests from this IP, please try again later.")


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return failure(404, "API endpoint not found")
    return failure(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    fields = [f for f in fields if f]
    message = f"Invalid request: {', '.join(fields)}" if fields else "Invalid request"
    return failure(400, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return failure(500, "Internal server error")


# Submission

async def _read_attachments(form) -> Dict[str, List[Attachment]]:
    files = {}
    for field_name in ATTACHMENT_LIMITS:
        attachments = []
        for upload in form.getlist(field_name):
            if not isinstance(upload, UploadFile) or not upload.filename:
                continue
            content = await upload.read()
            attachments.append(Attachment(
                content=content,
                filename=upload.filename,
                content_type=upload.content_type,
                size=upload.size if upload.size is not None else len(content),
            ))
        files[field_name] = attachments
    return files


@app.post("/api/submit", status_code=201)
async def submit(request: Request, workflow: SubmissionWorkflow = Depends(get_workflow)):
    content_length = request.headers.get("content-length")
    if not content_length or not content_length.isdigit():
        raise HTTPException(status_code=411, detail="Content-Length required")
    if int(content_length) > config.MAX_REQUEST_BYTES:
        raise HTTPException(status_code=413, detail="Request too large")

    form = await request.form(max_files=config.MAX_UPLOAD_FILES)
    try:
        fields = {k: v for k, v in form.items() if isinstance(v, str)}
        files = await _read_attachments(form)
    finally:
        await form.close()

    data = await workflow.submit(
        fields,
        files,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "message": "Application submitted successfully", "data": data}


@app.post("/api/submit/check-email")
async def check_email(body: CheckEmailRequest, workflow: SubmissionWorkflow = Depends(get_workflow)):
    exists = await workflow.check_email(body.email)
    return {
        "success": True,
        "exists": exists,
        "message": "An application with this email already exists" if exists else "Email is available",
    }


@app.get("/api/submit/validation-rules")
def get_validation_rules():
    return {"success": True, "data": validation_rules()}


# Admin

admin_guard = [Depends(require_admin_key)]


def _filters(search: Optional[str] = None, committee: Optional[str] = None, position: Optional[str] = None,
             year: Optional[str] = None, status: Optional[str] = None) -> RegistrationFilters:
    return RegistrationFilters(search=search, committee=committee, position=position, year=year, status=status)


@app.get("/api/admin/stats", dependencies=admin_guard)
async def stats(repository: RegistrationRepository = Depends(get_repository)):
    return {"success": True, "data": await repository.stats()}


@app.get("/api/admin/registrations", dependencies=admin_guard)
async def registrations(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    filters: RegistrationFilters = Depends(_filters),
    repository: RegistrationRepository = Depends(get_repository),
):
    data, pagination = await list_registrations(repository, filters, page, limit)
    return {"success": True, "data": data, "pagination": pagination}


@app.post("/api/admin/registrations/bulk-action", dependencies=admin_guard)
async def registrations_bulk_action(
    body: BulkActionRequest,
    repository: RegistrationRepository = Depends(get_repository),
    store: ObjectStoreGateway = Depends(get_object_store),
):
    results = await bulk_action(repository, store, body.action, body.registrationIds, body.data)
    return {"success": True, "message": f"Bulk {body.action} completed", "results": results}


@app.get("/api/admin/registrations/{registration_id}", dependencies=admin_guard)
async def get_registration(registration_id: str, repository: RegistrationRepository = Depends(get_repository)):
    registration = await repository.get(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    return {"success": True, "data": registration}


@app.put("/api/admin/registrations/{registration_id}", dependencies=admin_guard)
async def put_registration(registration_id: str, body: dict,
                           repository: RegistrationRepository = Depends(get_repository)):
    try:
        await update_registration(repository, registration_id, body)
    except NotFoundError:
        raise NotFoundError("Registration not found")
    return {"success": True, "message": "Registration updated successfully"}


@app.delete("/api/admin/registrations/{registration_id}", dependencies=admin_guard)
async def remove_registration(
    registration_id: str,
    repository: RegistrationRepository = Depends(get_repository),
    store: ObjectStoreGateway = Depends(get_object_store),
):
    try:
        await delete_registration(repository, store, registration_id)
    except NotFoundError:
        raise NotFoundError("Registration not found")
    return {"success": True, "message": "Registration deleted successfully"}


@app.get("/api/admin/registrations/{registration_id}/files/{field_name}", dependencies=admin_guard)
async def registration_file(
    registration_id: str,
    field_name: str,
    repository: RegistrationRepository = Depends(get_repository),
    store: ObjectStoreGateway = Depends(get_object_store),
):
    registration = await repository.get(registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    keys = store.attachment_keys({field_name: (registration.get("files") or {}).get(field_name)})
    if not keys:
        raise NotFoundError(f"No {field_name} uploaded for this registration")

    link = await store.presign(keys[0])
    metadata = await store.get_metadata(keys[0])
    return {"success": True, "data": {**link, "key": keys[0], "metadata": metadata}}


@app.get("/api/admin/export", dependencies=admin_guard)
async def export(
    export_format: str = Query("json", alias="format", pattern="^(json|csv)$"),
    filters: RegistrationFilters = Depends(_filters),
    repository: RegistrationRepository = Depends(get_repository),
):
    records = filter_registrations(await repository.list("submittedAt", "desc"), filters)
    rows = export_rows(records)

    if export_format == "csv":
        filename = f"registrations_{datetime.now(timezone.utc).date().isoformat()}.csv"
        return Response(
            content=to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    return {
        "success": True,
        "data": rows,
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "totalRecords": len(rows),
    }


# Mail

@app.post("/api/admin/send-mail", dependencies=admin_guard)
async def send_mail(body: SendMailRequest, mailer: Mailer = Depends(get_mailer)):
    results = await mailer.broadcast(
        body.recipients,
        body.subject,
        body.message,
        template=body.template,
        provider=body.smtpProvider,
        cc=body.cc,
        bcc=body.bcc,
    )
    return {
        "success": True,
        "message": f"Email sending completed. Sent: {results['sent']}, Failed: {results['failed']}",
        "results": results,
    }


@app.post("/api/admin/send-welcome", dependencies=admin_guard)
async def send_welcome(body: SendWelcomeRequest, mailer: Mailer = Depends(get_mailer)):
    results = await mailer.send_welcome(body.registrationIds)
    return {
        "success": True,
        "message": f"Welcome emails sent. Sent: {results['sent']}, Failed: {results['failed']}",
        "results": results,
    }


@app.get("/api/admin/templates", dependencies=admin_guard)
def templates(mailer: Mailer = Depends(get_mailer)):
    return {"success": True, "data": mailer.describe()}


@app.post("/api/admin/test-smtp", dependencies=admin_guard)
async def test_smtp(body: SmtpTestRequest, mailer: Mailer = Depends(get_mailer)):
    await mailer.send_test(body.provider, body.testEmail)
    return {"success": True, "message": "Test email sent successfully"}


@app.get("/health")
@limiter.exempt
def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED_AT,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
