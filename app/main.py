import logging, threading, time
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from giftclaim.authorizer import ClaimAuthorizer, ClaimRequest, Outcome, build_authorizer
from giftclaim.config import ClaimConfig, load_config
from giftclaim.credentials import CredentialVerifier, TrustStore
from giftclaim.errors import ClaimError, ConfigurationError, Reason
from giftclaim.logging_config import audit_log, configure_logging, get_request_id, log_fields, set_request_id
from .models import ClaimValidationRequest, HealthResponse

logger = logging.getLogger("giftclaim.api")

app = FastAPI(title="Gift Escrow Claim Authorization")

_lock = threading.Lock()


class ClaimHTTPError(Exception):
    """A ClaimError bound to the HTTP status it is reported with."""

    def __init__(self, status_code: int, error: ClaimError, correlation_id: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.correlation_id = correlation_id
        super().__init__(error.message)


def _envelope(error: str, message: str, **extra) -> dict:
    body = {"success": False, "valid": False, "error": error, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


@app.on_event("startup")
def _startup():
    try:
        config = _service_config()
    except ConfigurationError as e:
        configure_logging()
        logger.error("Configuration could not be parsed: %s", e.message)
        return
    configure_logging(level=config.log_level, json_format=config.log_json, log_file=config.log_file)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id") or None)
    started = time.monotonic()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s -> %s", request.method, request.url.path, response.status_code,
        extra=log_fields(status=response.status_code, duration_ms=round((time.monotonic() - started) * 1000, 1)),
    )
    return response


# ============================================================
# Exception handlers
# ============================================================

@app.exception_handler(ClaimHTTPError)
async def _claim_http_error(request: Request, exc: ClaimHTTPError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    body = _envelope(exc.error.reason.value, exc.error.message, correlationId=exc.correlation_id)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        body = _envelope(Reason.METHOD_NOT_ALLOWED.value, "Method not allowed")
    elif exc.status_code == 404:
        body = _envelope(Reason.NOT_FOUND.value, "Not found")
    else:
        body = _envelope("HTTPError", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    else:
        message = "Invalid request body"
    return JSONResponse(status_code=400, content=_envelope(Reason.INVALID_INPUT.value, message))


# ============================================================
# Dependencies
# ============================================================

def _configuration_failure(e: ConfigurationError) -> ClaimHTTPError:
    correlation_id = get_request_id()
    audit_log.operational_error(e.reason.value, correlation_id, e.message)
    return ClaimHTTPError(500, ConfigurationError("Server configuration error"), correlation_id)


def _service_config() -> ClaimConfig:
    """Parsed environment, loaded once per process. Parse failures are not kept."""
    with _lock:
        config = getattr(app.state, "config", None)
        if config is None:
            config = load_config()
            app.state.config = config
        return config


def get_config() -> ClaimConfig:
    try:
        return _service_config()
    except ConfigurationError as e:
        raise _configuration_failure(e) from e


def get_credential_verifier(config: ClaimConfig = Depends(get_config)) -> CredentialVerifier:
    with _lock:
        verifier = getattr(app.state, "verifier", None)
        if verifier is None:
            verifier = CredentialVerifier(
                TrustStore(config.trust_store_path), max_skew_seconds=config.credential_max_skew_seconds
            )
            app.state.verifier = verifier
        return verifier


def require_authenticated_address(
    authorization: Optional[str] = Header(None),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
) -> str:
    result = verifier.authenticate(authorization)
    if not result.authenticated():
        audit_log.security_event("AUTHENTICATION_FAILED", severity="low", failure=result.failure.value)
        raise ClaimHTTPError(401, result.to_error())
    return result.address


def get_authorizer(config: ClaimConfig = Depends(get_config)) -> ClaimAuthorizer:
    """Built on the first authenticated request; validates config and opens the registry."""
    with _lock:
        authorizer = getattr(app.state, "authorizer", None)
        if authorizer is None:
            try:
                authorizer = build_authorizer(config)
            except ConfigurationError as e:
                raise _configuration_failure(e) from e
            app.state.authorizer = authorizer
        return authorizer


# ============================================================
# Routes
# ============================================================

@app.post("/claim/validate")
async def validate_claim(
    request: Request,
    authenticated_address: str = Depends(require_authenticated_address),
    authorizer: ClaimAuthorizer = Depends(get_authorizer),
):
    # body is parsed here, after the dependencies, so 401 wins over 400
    raw = await request.body()
    try:
        body = ClaimValidationRequest.model_validate_json(raw or b"null")
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors())

    decision = await run_in_threadpool(
        authorizer.authorize, ClaimRequest.from_dict(body.as_payload()), authenticated_address
    )

    if decision.outcome == Outcome.AUTHORIZED:
        status = 200
    elif decision.outcome == Outcome.DENIED:
        status = 400
    elif decision.reason == Reason.FORBIDDEN:
        status = 403
    else:
        status = 500
    return JSONResponse(status_code=status, content=decision.to_dict(), headers={"Cache-Control": "no-store"})


@app.get("/health", response_model=HealthResponse)
def health():
    try:
        config = _service_config().validate()
    except ConfigurationError:
        return HealthResponse(status="degraded", configured=False)
    summary = config.public_summary()
    return HealthResponse(
        status="ok",
        configured=True,
        contractAddress=summary["contractAddress"],
        chainId=summary["chainId"],
        registryBackend=summary["registryBackend"],
    )
