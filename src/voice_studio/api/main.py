import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from voice_studio.api import account, admin, catalog, tasks
from voice_studio.api.deps import envelope
from voice_studio.config import settings
from voice_studio.db import init_db
from voice_studio.errors import AppError, ValidationError
from voice_studio.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Voice Studio", version=settings.app_version)
init_db()

app.include_router(tasks.router)
app.include_router(account.router)
app.include_router(catalog.router)
app.include_router(admin.router)


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope({}, status="error", error=error))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "request_failed",
        extra={"path": request.url.path, "method": request.method, "status_code": exc.status_code, "error": exc.message},
    )
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    message = details[0]["message"] if details else "Invalid request"
    return _error_response(400, ValidationError(message, details=details).to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, {"code": "HTTP_ERROR", "message": str(exc.detail), "details": None})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return _error_response(500, {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None})


@app.get("/health")
def health() -> dict:
    return envelope({"service": "voice-studio"})


@app.get("/version")
def version() -> dict:
    return envelope({"service": "voice-studio", "version": settings.app_version})
