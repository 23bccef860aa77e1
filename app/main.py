"""ParkShare – FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import get_settings
from app.database import Base, SessionLocal, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from app.models import User, Parking, Occupation  # noqa: F401
from app.errors import AppError, DuplicateKeyError, InternalError, ValidationError
from app.routers import auth, occupations, parkings
from app.services.credentials import duplicate_field_from_integrity_error
from app.services.scheduler import get_scheduler, start_scheduler

log = logging.getLogger("uvicorn.error")
settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(parkings.router, prefix=settings.api_prefix)
app.include_router(occupations.router, prefix=settings.api_prefix)


def _error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        msg = str(err.get("msg", "")).removeprefix("Value error, ")
        fields.append({loc[-1] if loc else "body": msg})
    return _error_response(ValidationError(fields=fields))


@app.exception_handler(IntegrityError)
def integrity_error_handler(request: Request, exc: IntegrityError):
    field = duplicate_field_from_integrity_error(exc)
    if field:
        return _error_response(DuplicateKeyError(field))
    log.error("%s %s integrity error: %s", request.method, request.url.path, exc.orig)
    return _error_response(InternalError())


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    status = "fail" if 400 <= exc.status_code < 500 else "error"
    return JSONResponse(status_code=exc.status_code, content={"status": status, "message": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = InternalError().to_dict()
    if not settings.is_production:
        body["error"] = repr(exc)
        body["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=body)


@app.on_event("startup")
def startup():
    if settings.mailgun_api_key and settings.mailgun_domain:
        from_addr = settings.mailgun_from_email or ""
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        send_domain = settings.mailgun_domain.strip().lower()
        if from_domain and send_domain and from_domain != send_domain:
            log.warning("[Mailgun] from=%s does not match domain=%s. Emails may not be delivered!", from_addr, settings.mailgun_domain)
        else:
            log.info("[Mailgun] Using domain=%s from=%s", settings.mailgun_domain, from_addr or "(none)")
    else:
        log.info("[Mailgun] Not configured - emails fall back to SendGrid or are skipped")

    Base.metadata.create_all(bind=engine)
    from app.seed import seed_admin
    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
    start_scheduler()


@app.on_event("shutdown")
def shutdown():
    get_scheduler().shutdown()
    engine.dispose()


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
