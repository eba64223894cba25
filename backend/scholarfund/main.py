"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the scholarship ledger.
Controllers are intentionally thin: they authenticate the caller, accept
requests, delegate to services, and return JSON responses. Every
`LedgerError` raised below is turned into a JSON `{"error": ...}` body by
one exception handler; server-side failures are logged with their detail
and answered with a generic message.

Endpoints implemented:
- POST /signup
- POST /login
- GET /profile
- GET /stats
- POST /scholarship
- GET /scholarships
- GET /scholarship/{student_id}
- GET /scholarship/{student_id}/contributions
- POST /contribute
- GET /health
"""

from fastapi import FastAPI, Body, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
import pydantic
import json
import logging
import os
import time
import uuid
from .auth import IdentityGateway, get_current_identity, get_gateway
from .config import settings
from .database import KeyValueStore, create_db_and_tables, get_store
from .errors import LedgerError, ValidationError
from . import services, schemas
from .utils.rate_limit import AttemptLimiter

app = FastAPI(title="Scholarship Ledger API")
logger = logging.getLogger("scholarfund.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_auth_limiter = AttemptLimiter(settings.AUTH_RATE_LIMIT_PER_MIN, settings.AUTH_RATE_LIMIT_WINDOW_SECONDS)

# The dashboard frontend is served from a different origin during development.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message, exc_info=exc)
    headers = {}
    if getattr(exc, "retry_after", None):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.client_message}, headers=headers)


def _describe_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid request body"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body shape errors are client errors like any other validation failure."""
    return JSONResponse(status_code=400, content={"error": _describe_validation_errors(exc.errors())})


def _enforce_auth_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    _auth_limiter.hit(key)


@app.post('/signup')
def signup(request: Request, payload: dict = Body(...), store: KeyValueStore = Depends(get_store), gateway: IdentityGateway = Depends(get_gateway)):
    """Register a student or alumni account.

    `role` selects the profile shape: students give `rollNumber`, `year`
    and `semester`; alumni give `email` and optionally `passedOutYear`
    and `linkedIn`.
    """
    _enforce_auth_rate_limit(request)
    try:
        data = schemas.signup_adapter.validate_python(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe_validation_errors(e.errors()))
    identity = services.DirectoryService(store, gateway).register(data)
    return {'success': True, 'userId': identity.id}


@app.post('/login')
def login(request: Request, payload: schemas.LoginIn, store: KeyValueStore = Depends(get_store), gateway: IdentityGateway = Depends(get_gateway)):
    """Authenticate and return a bearer token plus the caller's profile.

    `identifier` is the roll number for students and the email for alumni.
    """
    _enforce_auth_rate_limit(request)
    session = services.DirectoryService(store, gateway).authenticate(payload.role, payload.identifier, payload.password)
    return {'success': True, **session.to_json()}


@app.get('/profile')
def profile(store: KeyValueStore = Depends(get_store), gateway: IdentityGateway = Depends(get_gateway), caller: schemas.Identity = Depends(get_current_identity)):
    """Return the authenticated caller's profile."""
    p = services.DirectoryService(store, gateway).get(caller.id)
    return {'profile': p.to_json()}


@app.get('/stats')
def stats(store: KeyValueStore = Depends(get_store)):
    """Public landing-page counters. Display only; the three figures may
    reflect slightly different instants under concurrent writes."""
    return services.StatsService(store).snapshot().to_json()


@app.post('/scholarship')
def submit_scholarship(payload: schemas.ScholarshipIn, store: KeyValueStore = Depends(get_store), caller: schemas.Identity = Depends(get_current_identity)):
    """Submit (or replace) the authenticated student's scholarship request."""
    req = services.ScholarshipService(store).submit(caller, caller.id, payload)
    return {'success': True, 'scholarship': req.to_json()}


@app.get('/scholarships')
def list_scholarships(store: KeyValueStore = Depends(get_store), caller: schemas.Identity = Depends(get_current_identity)):
    """List every scholarship request with the student's display fields."""
    return {'scholarships': list(services.ScholarshipService(store).list_all())}


@app.get('/scholarship/{student_id}')
def get_scholarship(student_id: str, store: KeyValueStore = Depends(get_store), gateway: IdentityGateway = Depends(get_gateway), caller: schemas.Identity = Depends(get_current_identity)):
    """Return one student's request with its current total and the profile."""
    req = services.ScholarshipService(store).get(student_id)
    p = services.DirectoryService(store, gateway).find(student_id)
    return {'request': req.to_json(), 'profile': p.to_json() if p is not None else None}


@app.get('/scholarship/{student_id}/contributions')
def list_contributions(student_id: str, store: KeyValueStore = Depends(get_store), caller: schemas.Identity = Depends(get_current_identity)):
    """Ledger entries counting toward the student's current request."""
    entries = services.ScholarshipService(store).contributions_for(student_id)
    return {'contributions': [c.to_json() for c in entries]}


@app.post('/contribute')
def contribute(payload: schemas.ContributeIn, store: KeyValueStore = Depends(get_store), caller: schemas.Identity = Depends(get_current_identity)):
    """Record a contribution from the caller toward a student's request."""
    c = services.ContributionService(store).record(caller, payload.student_id, payload.amount)
    return {'success': True, 'contribution': c.to_json()}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
