from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.logging import get_api_logger_safe
from core.utils.exceptions import OrderExecutionError, ErrorKind

logger = get_api_logger_safe("api.middleware.error_handling")


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Global error handling middleware"""

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException as e:
            # Let FastAPI handle HTTP exceptions normally
            raise e
        except Exception as e:
            logger.error(
                "Unhandled API exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "code": "INTERNAL_ERROR"}
            )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    # pydantic prefixes custom validator messages
    message = message.removeprefix("Value error, ")
    return f"{field}: {message}" if field else message


async def order_error_handler(request: Request, exc: OrderExecutionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Order request failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _validation_message(exc)
    logger.info("Request validation failed", path=request.url.path, error=message)
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": ErrorKind.VALIDATION_ERROR.value}
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderExecutionError, order_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
