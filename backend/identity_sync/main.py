import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from identity_sync.core.config import settings
from identity_sync.middleware.route_gate import RouteGate, register_route_gate
from identity_sync.routes.users import router as users_router
from identity_sync.routes.webhook import router as webhook_router

logger = logging.getLogger(__name__)

app = FastAPI(title="Identity Sync")
logger.info(
    "Startup config: ENV=%s webhook_secret_configured=%s clerk_issuer=%s public_paths=%d",
    settings.ENV,
    bool(settings.CLERK_WEBHOOK_SECRET),
    settings.CLERK_ISSUER or "unset",
    len(settings.ROUTE_GATE_PUBLIC_PATHS),
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message: str
    details: dict | None = None

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        # HTTPException(detail={"message": "...", "details": {...}})
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    payload: dict = {"error": _error_code(exc.status_code), "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": exc.errors()},
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Registered last so it wraps everything else and runs first.
register_route_gate(
    app,
    RouteGate(
        settings.ROUTE_GATE_PUBLIC_PATHS,
        session_cookie=settings.ROUTE_GATE_SESSION_COOKIE,
        sign_in_path=settings.ROUTE_GATE_SIGN_IN_PATH,
    ),
)

app.include_router(webhook_router)
app.include_router(users_router)

@app.get("/health")
def health_check():
    return {"status": "ok"}
