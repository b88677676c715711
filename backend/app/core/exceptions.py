"""
全局异常处理模块 (Global Exception Handling Module)

定义 SMTPLog 的业务异常和 FastAPI 全局异常处理器。所有错误响应统一为
{error, message, detail, status_code} 结构：业务异常映射到各自状态码，
请求参数校验失败返回 422，数据库不可达返回 503，其余未捕获异常返回 500。

Business exceptions and FastAPI handlers. Every error response shares the
{error, message, detail, status_code} envelope: business errors map to their own
status, request validation failures to 422, an unreachable database to 503 and
anything else to 500.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)


class BusinessError(Exception):
    """业务异常基类 (Base Business Exception)"""
    status_code: int = 400
    error: str = "business_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(BusinessError):
    """投递记录等资源不存在 (Resource Not Found)"""
    status_code = 404
    error = "not_found"


class ConflictError(BusinessError):
    """导入已在进行中 (Import Already Running)"""
    status_code = 409
    error = "conflict"


class ImportFailedError(BusinessError):
    """日志导入失败，detail 携带失败原因 (Log Import Failed)"""
    status_code = 500
    error = "import_failed"


def _envelope(status_code: int, error: str, message: str, detail: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "status_code": status_code,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    注册全局异常处理器 (Register global exception handlers)

    处理优先级：
    1. BusinessError 子类 → 对应 HTTP 状态码
    2. RequestValidationError → 422，detail 为字段错误列表
    3. HTTPException → 保持状态码，包装为统一格式
    4. 数据库连接错误 → 503
    5. Exception → 500 + 完整 traceback 日志
    """

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.error} on {request.method} {request.url.path}: {exc.message} ({exc.detail})")
        return _envelope(exc.status_code, exc.error, exc.message, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _envelope(422, "validation_error", "Invalid request parameters", errors)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return _envelope(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(OperationalError)
    async def database_unavailable_handler(request: Request, exc: DBAPIError) -> JSONResponse:
        logger.error(f"Database unavailable on {request.method} {request.url.path}: {exc.orig}")
        return _envelope(
            503,
            "database_unavailable",
            "数据库暂不可用，请稍后重试 (Database unavailable, please try again later)",
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        return _envelope(
            500,
            "internal_server_error",
            "服务器内部错误，请稍后重试 (Internal server error, please try again later)",
        )
