"""
Exception handlers. Every failure leaves the API as
{"success": false, "error": "<message>"}.
"""
import logging

import jwt
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    headers = extra.pop("headers", None)
    body = {"success": False, "error": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(404, f"Not Found - {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return error_response(400, "Validation failed", details=details)


async def invalid_id_handler(request: Request, exc: InvalidId):
    return error_response(404, "Resource not found")


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(400, "Duplicate field value entered")


async def jwt_expired_handler(request: Request, exc: jwt.ExpiredSignatureError):
    return error_response(401, "Token expired")


async def jwt_invalid_handler(request: Request, exc: jwt.InvalidTokenError):
    return error_response(401, "Invalid token")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Server Error")


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    # ExpiredSignatureError subclasses InvalidTokenError; most specific wins
    app.add_exception_handler(jwt.ExpiredSignatureError, jwt_expired_handler)
    app.add_exception_handler(jwt.InvalidTokenError, jwt_invalid_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
