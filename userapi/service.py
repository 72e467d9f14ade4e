"""HTTP API exposing the users resource and the liveness probes."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import TrustedProxies
from .database import Database
from .errors import ErrorKind, Failure, Result
from .models import User
from .users import USER_NOT_FOUND, UserRepository

logger = logging.getLogger("userapi.service")

INTERNAL_ERROR = "Internal server error"
INVALID_USER_ID = "Invalid user id"
NAME_AND_EMAIL_REQUIRED = "Name and email required"
INVALID_JSON = "Invalid JSON body"

_USER_ID_PATTERN = re.compile(r"[+-]?[0-9]+")

# Bounds of the PostgreSQL ``integer`` type backing ``users.id``.
PG_INTEGER_MIN = -(2**31)
PG_INTEGER_MAX = 2**31 - 1
_MAX_ID_DIGITS = len(str(PG_INTEGER_MAX))

_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DATABASE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class UserPayload(BaseModel):
    """Body accepted by the create and update endpoints."""

    model_config = ConfigDict(extra="ignore")

    name: StrictStr = Field(..., min_length=1)
    email: StrictStr = Field(..., min_length=1)


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_user_id(raw: str) -> Result[int]:
    """Parse a path segment into a user id.

    Non-integers fail with ``VALIDATION``. Integers that cannot exist in the
    ``users.id`` column fail with ``NOT_FOUND`` without reaching the database.
    """

    candidate = raw.strip()
    if not _USER_ID_PATTERN.fullmatch(candidate):
        return Result.fail(ErrorKind.VALIDATION, INVALID_USER_ID)
    # Checked before int() so arbitrarily long digit runs are never converted.
    if len(candidate.lstrip("+-").lstrip("0")) > _MAX_ID_DIGITS:
        return Result.fail(ErrorKind.NOT_FOUND, USER_NOT_FOUND)
    try:
        user_id = int(candidate)
    except ValueError:
        return Result.fail(ErrorKind.VALIDATION, INVALID_USER_ID)
    if not PG_INTEGER_MIN <= user_id <= PG_INTEGER_MAX:
        return Result.fail(ErrorKind.NOT_FOUND, USER_NOT_FOUND)
    return Result.success(user_id)


async def read_user_payload(request: Request) -> Result[UserPayload]:
    body = await request.body()
    if not body.strip():
        data: Any = {}
    else:
        try:
            data = await request.json()
        except ValueError:
            return Result.fail(ErrorKind.VALIDATION, INVALID_JSON)

    if not isinstance(data, dict):
        return Result.fail(ErrorKind.VALIDATION, NAME_AND_EMAIL_REQUIRED)
    try:
        return Result.success(UserPayload.model_validate(data))
    except ValidationError:
        return Result.fail(ErrorKind.VALIDATION, NAME_AND_EMAIL_REQUIRED)


def failure_response(failure: Failure, endpoint: str) -> JSONResponse:
    """Translate a :class:`Failure` into the JSON error envelope."""

    status_code = _STATUS_BY_KIND[failure.kind]
    if failure.kind is ErrorKind.DATABASE:
        logger.error("Database error on %s: %s", endpoint, failure.message)
        return JSONResponse({"error": INTERNAL_ERROR}, status_code=status_code)
    return JSONResponse({"error": failure.message}, status_code=status_code)


def _respond(
    result: Result[Any],
    endpoint: str,
    render: Callable[[Any], Any],
    *,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    if result.failure is not None:
        return failure_response(result.failure, endpoint)
    return JSONResponse(render(result.value), status_code=status_code)


def _render_user(user: User) -> Dict[str, Any]:
    return user.to_dict()


def _render_users(users: List[User]) -> List[Dict[str, Any]]:
    return [user.to_dict() for user in users]


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, _exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": "Invalid request"}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse({"error": INTERNAL_ERROR}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def create_app(
    *,
    database: Database,
    repository: Optional[UserRepository] = None,
    trusted_proxies: TrustedProxies = "*",
) -> FastAPI:
    """Build the API around an already opened :class:`Database`."""

    users = repository or UserRepository(database)

    app = FastAPI(
        title="Users API",
        description="CRUD API for user records backed by PostgreSQL",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxies)
    app.state.database = database
    app.state.users = users
    _register_error_handlers(app)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "healthy", "timestamp": _utc_timestamp()}

    @app.get("/api/status")
    async def read_status() -> Response:
        try:
            stats = database.stats()
        except Exception as exc:
            logger.error("Unable to read connection pool status: %s", exc)
            return JSONResponse({"error": INTERNAL_ERROR}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse({"server": "healthy", "database": stats.to_dict()})

    @app.get("/api/users")
    async def list_users() -> Response:
        return _respond(await users.list_users(), "/api/users", _render_users)

    @app.post("/api/users")
    async def create_user(request: Request) -> Response:
        payload = await read_user_payload(request)
        if payload.failure is not None:
            return failure_response(payload.failure, "POST /api/users")
        result = await users.create_user(payload.value.name, payload.value.email)
        if result.value is not None:
            logger.info("Created user %s", result.value.id)
        return _respond(result, "POST /api/users", _render_user, status_code=status.HTTP_201_CREATED)

    @app.get("/api/users/{user_id}")
    async def read_user(user_id: str) -> Response:
        parsed = parse_user_id(user_id)
        if parsed.failure is not None:
            return failure_response(parsed.failure, "GET /api/users/:id")
        return _respond(await users.get_user(parsed.value), "GET /api/users/:id", _render_user)

    @app.put("/api/users/{user_id}")
    async def update_user(user_id: str, request: Request) -> Response:
        parsed = parse_user_id(user_id)
        if parsed.failure is not None and parsed.failure.kind is ErrorKind.VALIDATION:
            return failure_response(parsed.failure, "PUT /api/users/:id")
        payload = await read_user_payload(request)
        if payload.failure is not None:
            return failure_response(payload.failure, "PUT /api/users/:id")
        if parsed.failure is not None:
            return failure_response(parsed.failure, "PUT /api/users/:id")
        result = await users.update_user(parsed.value, payload.value.name, payload.value.email)
        return _respond(result, "PUT /api/users/:id", _render_user)

    @app.delete("/api/users/{user_id}")
    async def delete_user(user_id: str) -> Response:
        parsed = parse_user_id(user_id)
        if parsed.failure is not None:
            return failure_response(parsed.failure, "DELETE /api/users/:id")
        result = await users.delete_user(parsed.value)
        if result.failure is not None:
            return failure_response(result.failure, "DELETE /api/users/:id")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = [
    "UserPayload",
    "create_app",
    "failure_response",
    "parse_user_id",
    "read_user_payload",
]
