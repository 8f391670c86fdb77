from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from .schemas import ErrorResponse


def _serialize_detail(detail: str | dict | list | None) -> str | None:
    if detail is None:
        return None
    if isinstance(detail, (str, int, float)):
        return str(detail)
    return str(detail)


def error_response(status_code: int, error: str, detail: str | dict | list | None, request_id: str | None) -> JSONResponse:
    payload = ErrorResponse(error=error, detail=_serialize_detail(detail), request_id=request_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return error_response(exc.status_code, error=str(exc.detail) if exc.detail else exc.__class__.__name__, detail=None, request_id=request_id)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report body/query validation failures as 400 with a readable summary."""
    request_id = getattr(request.state, "request_id", None)
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return error_response(400, error="Validation error", detail="; ".join(problems), request_id=request_id)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.bind(request_id=request_id).opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
    return error_response(500, error="Internal Server Error", detail=None, request_id=request_id)
