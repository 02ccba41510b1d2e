"""
Обработчики ошибок (Exception Handlers) для API.

Все ошибки возвращаются в едином формате ErrorResponse:
{
    "error": {
        "code": "NOT_FOUND",
        "message": "Project 7 not found",
        "details": null
    }
}

SyncError и его подклассы несут свой HTTP статус, поэтому один handler
покрывает всю таксономию ошибок синхронизации.
"""

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ..core.errors import SyncError
from ..core.logging import get_logger
from .schemas import ErrorBody, ErrorDetail, ErrorResponse

logger = get_logger(__name__)


def _error_response(
    status_code: int, code: str, message: str, details: list[ErrorDetail] | None = None
) -> JSONResponse:
    error_response = ErrorResponse(error=ErrorBody(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=error_response.model_dump())


# =============================================================================
# EXCEPTION HANDLERS (Обработчики исключений)
# =============================================================================


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """
    Обработчик для типизированных ошибок синхронизации.

    5xx логируются как error, остальные как warning.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Sync Error: {exc.code} - {exc.message}",
        extra={"code": exc.code, "kind": exc.kind, "path": request.url.path},
    )

    details = None
    if exc.details:
        details = [
            ErrorDetail(field=str(d.get("field", "")), message=str(d.get("message", "")))
            for d in exc.details
        ]
    return _error_response(exc.status_code, exc.code, exc.message, details)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """HTTPException (например, от verify_api_key) в едином формате."""
    codes = {
        status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
        status.HTTP_403_FORBIDDEN: "ACCESS_DENIED",
        status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    }
    response = _error_response(
        exc.status_code, codes.get(exc.status_code, "HTTP_ERROR"), str(exc.detail)
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Обработчик для ошибок валидации Pydantic (422).

    Преобразуем ошибки Pydantic в наш формат:
    {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Ошибка валидации входных данных",
            "details": [{"field": "projectId", "message": "..."}]
        }
    }
    """
    logger.warning(f"Validation Error: {exc.errors()}")

    details = []
    for error in exc.errors():
        # loc - путь к полю, например ["body", "projectId"] или ["query", "limit"]
        field_path = error.get("loc", [])
        field_name = field_path[-1] if field_path else "unknown"

        if len(field_path) > 1 and field_path[0] == "body":
            field_name = ".".join(str(p) for p in field_path[1:])

        details.append(
            ErrorDetail(field=str(field_name), message=error.get("msg", "Ошибка валидации"))
        )

    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Ошибка валидации входных данных",
        details,
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Превышен лимит slowapi (429)."""
    logger.warning("Rate limit exceeded", extra={"path": request.url.path, "limit": str(exc.detail)})
    return _error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "RATE_LIMIT_EXCEEDED",
        f"Слишком много запросов. Лимит: {exc.detail}",
        [ErrorDetail(field="rate_limit", message=str(exc.detail))],
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Обработчик для всех остальных ошибок (500).

    Детали внутренних ошибок клиенту не показываем.
    """
    logger.error(f"Internal Error: {type(exc).__name__}: {exc}", exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Внутренняя ошибка сервера"
    )


# =============================================================================
# РЕГИСТРАЦИЯ HANDLERS
# =============================================================================


def register_error_handlers(app):
    """
    Регистрирует все error handlers в приложении FastAPI.

    Вызывается из main.py:
        from tasksync.api.errors import register_error_handlers
        register_error_handlers(app)
    """
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_error_handler)

    logger.info("Error handlers registered")
