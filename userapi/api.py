"""FastAPI application exposing the users resource."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Annotated, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Path, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import Settings, load_settings
from .context import RequestContext
from .database import Database
from .models import MAX_USER_ID, User, UserRepository, UserRequest
from .repository import UserNotFoundError, UserStore

logger = logging.getLogger("userapi.api")

UserId = Annotated[int, Path(ge=1, le=MAX_USER_ID)]

_DISCONNECT_POLL_INTERVAL = 0.1


class UserRequestBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr

    @field_validator("name")
    @classmethod
    def _reject_blank_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value

    def to_request(self) -> UserRequest:
        return UserRequest(name=self.name, email=self.email)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseModel):
    code: int
    message: str


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=status_code, message=message).model_dump(),
    )


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("USERAPI_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


async def _cancel_on_disconnect(
    request: Request,
    ctx: RequestContext,
    *,
    interval: float = _DISCONNECT_POLL_INTERVAL,
) -> None:
    """Cancel ``ctx`` as soon as the client behind ``request`` goes away."""

    while not ctx.done():
        if await request.is_disconnected():
            logger.info("Client disconnected during %s %s", request.method, request.url.path)
            ctx.cancel()
            return
        await asyncio.sleep(interval)


_NOT_FOUND_RESPONSES = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}
_BAD_REQUEST_RESPONSES = {status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}}


def create_app(
    *,
    store: UserRepository | None = None,
    database: Database | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the API around ``store``.

    When no store is given one is created on top of ``database``; when neither is
    given the database is opened from ``settings`` and migrated.
    """

    if settings is None:
        settings = load_settings()

    if store is None:
        if database is None:
            database = Database(settings.database_path, pool_size=settings.pool_size)
            database.initialize()
        store = UserStore(database)

    app = FastAPI(
        title="User API",
        description="CRUD API for user records",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.settings = settings
    app.state.database = database
    app.state.store = store

    def get_store() -> UserRepository:
        return store

    async def get_context(request: Request) -> AsyncIterator[RequestContext]:
        ctx = RequestContext(timeout=settings.request_timeout)
        watcher = asyncio.create_task(_cancel_on_disconnect(request, ctx))
        try:
            yield ctx
        finally:
            ctx.cancel()
            watcher.cancel()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
            response = _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.get("/health")
    def healthcheck(ctx: RequestContext = Depends(get_context)) -> JSONResponse:
        if database is not None:
            try:
                database.ping(ctx)
            except Exception:
                logger.exception("Database health check failed")
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "unavailable"},
                )
        return JSONResponse(content={"status": "ok"})

    @app.get("/users", response_model=List[UserResponse])
    def list_users(
        ctx: RequestContext = Depends(get_context),
        users: UserRepository = Depends(get_store),
    ) -> List[UserResponse]:
        return [user_to_response(user) for user in users.list(ctx)]

    @app.post(
        "/users",
        response_model=UserResponse,
        status_code=status.HTTP_201_CREATED,
        responses=_BAD_REQUEST_RESPONSES,
    )
    def create_user(
        payload: UserRequestBody,
        ctx: RequestContext = Depends(get_context),
        users: UserRepository = Depends(get_store),
    ) -> UserResponse:
        user = users.create(ctx, payload.to_request())
        logger.info("Created user #%s", user.id)
        return user_to_response(user)

    @app.get("/users/{user_id}", response_model=UserResponse, responses=_NOT_FOUND_RESPONSES)
    def read_user(
        user_id: UserId,
        ctx: RequestContext = Depends(get_context),
        users: UserRepository = Depends(get_store),
    ) -> UserResponse:
        return user_to_response(users.get(ctx, user_id))

    @app.put(
        "/users/{user_id}",
        response_model=UserResponse,
        responses={**_NOT_FOUND_RESPONSES, **_BAD_REQUEST_RESPONSES},
    )
    def update_user(
        user_id: UserId,
        payload: UserRequestBody,
        ctx: RequestContext = Depends(get_context),
        users: UserRepository = Depends(get_store),
    ) -> UserResponse:
        return user_to_response(users.update(ctx, user_id, payload.to_request()))

    @app.delete(
        "/users/{user_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        response_class=Response,
        responses=_NOT_FOUND_RESPONSES,
    )
    def delete_user(
        user_id: UserId,
        ctx: RequestContext = Depends(get_context),
        users: UserRepository = Depends(get_store),
    ) -> Response:
        users.delete(ctx, user_id)
        logger.info("Deleted user #%s", user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.exception_handler(UserNotFoundError)
    async def handle_not_found(_: Request, exc: UserNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "User not found")

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, _describe_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(code=exc.status_code, message=message).model_dump(),
            headers=getattr(exc, "headers", None),
        )

    return app


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first: Dict[str, object] = dict(errors[0])
    location = [str(part) for part in tuple(first.get("loc", ()))[1:]]
    field: Optional[str] = ".".join(location) or None
    if field:
        return f"Invalid value for '{field}'"
    return "Invalid request body"


__all__ = ["ErrorResponse", "UserRequestBody", "UserResponse", "create_app", "user_to_response"]
