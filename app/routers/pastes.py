"""
Versioned share API.

Every call is resolved once into a PasteAction (HTTP method + last path
segment + the verify flag) and dispatched through ACTION_HANDLERS.
Mounted at /api/v1/pastes and /api/v1/shares.

처리 순서: 액션 결정 → 호출자 확인(API 키) → 쿼터 확인 → 액션 실행 → X-RateLimit-* 헤더 추가
"""
import enum
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from app.config import get_settings
from app.database import get_db
from app.dependencies.auth import get_optional_caller, get_storage
from app.exceptions import (
    Internal,
    InvalidInput,
    MethodNotAllowed,
    NotFound,
    RateLimited,
    ShareError,
    Unauthorized,
)
from app.middlewares.rate_limit_middleware import enforce_ip_limit
from app.models.share import Share
from app.schemas.share import (
    FileShareCreatedResponse,
    FileShareViewResponse,
    PasswordVerify,
    ShareCreate,
    ShareCreatedResponse,
    ShareDeletedResponse,
    ShareListResponse,
    ShareMetadataResponse,
    ShareSummary,
    ShareViewResponse,
)
from app.services.api_key import Caller
from app.services.object_storage import ObjectStorageService
from app.services.rate_limiter import RateLimitResult, get_rate_limiter
from app.services.share import Disclosure, ShareService
from app.utils.client_ip import get_client_ip
from app.utils.file_types import upload_size_limit
from app.utils.prometheus_metrics import db_errors_total
from app.utils.security import anonymous_bucket_key

logger = logging.getLogger("app.api")
router = APIRouter(tags=["Pastes"])

API_PREFIXES = ("/api/v1/pastes", "/api/v1/shares")

API_KEY_HINT = "Valid API key required. Get one from your dashboard."

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"


class PasteAction(str, enum.Enum):
    CREATE = "create"
    UPLOAD = "upload"
    GET = "get"
    VERIFY_GET = "verify_get"
    RAW = "raw"
    IMG = "img"
    LIST = "list"
    DELETE = "delete"


_SEGMENT_ACTIONS: Dict[str, PasteAction] = {
    "create": PasteAction.CREATE,
    "upload": PasteAction.UPLOAD,
    "get": PasteAction.GET,
    "raw": PasteAction.RAW,
    "img": PasteAction.IMG,
    "list": PasteAction.LIST,
    "delete": PasteAction.DELETE,
}

ACTION_METHODS: Dict[PasteAction, str] = {
    PasteAction.CREATE: "POST",
    PasteAction.UPLOAD: "POST",
    PasteAction.GET: "GET",
    PasteAction.VERIFY_GET: "POST",
    PasteAction.RAW: "GET",
    PasteAction.IMG: "GET",
    PasteAction.LIST: "GET",
    PasteAction.DELETE: "DELETE",
}

# API 키 필수 액션
AUTH_REQUIRED = frozenset({PasteAction.LIST, PasteAction.DELETE})

# 익명 허용 여부가 설정(allow_anonymous_create)에 따르는 액션
CREATE_ACTIONS = frozenset({PasteAction.CREATE, PasteAction.UPLOAD})


def resolve_action(method: str, segment: str, has_id: bool, verify: bool) -> PasteAction:
    """
    Resolve the action of a request.

    Args:
        method: HTTP method
        segment: Last path segment after the API prefix ("" for the prefix itself)
        has_id: Whether the id query parameter is present
        verify: Whether the verify query parameter is set

    Raises:
        NotFound: unknown action segment
        MethodNotAllowed: known action, wrong method (or verify on a non-get action)
    """
    method = method.upper()
    if method == "POST" and verify:
        if segment and segment not in _SEGMENT_ACTIONS:
            raise NotFound(f"Unknown action: {segment}")
        # verify는 get 액션에만 붙는다
        if segment not in ("", "get"):
            raise MethodNotAllowed()
        return PasteAction.VERIFY_GET

    if not segment:
        # 액션 없는 경로: 메서드로 결정
        if method == "GET":
            return PasteAction.GET if has_id else PasteAction.LIST
        if method == "POST":
            return PasteAction.CREATE
        if method == "DELETE":
            return PasteAction.DELETE
        raise MethodNotAllowed()

    action = _SEGMENT_ACTIONS.get(segment)
    if action is None:
        raise NotFound(f"Unknown action: {segment}")
    if ACTION_METHODS[action] != method:
        raise MethodNotAllowed()
    return action


@dataclass
class ActionContext:
    request: Request
    service: ShareService
    caller: Optional[Caller]
    share_id: Optional[str]

    def require_id(self) -> str:
        if not self.share_id:
            raise InvalidInput("Paste ID required")
        return self.share_id

    def require_caller(self) -> Caller:
        if self.caller is None:
            raise Unauthorized()
        return self.caller


Handler = Callable[[ActionContext], Awaitable[Response]]


def _json(model: BaseModel, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(mode="json"))


def share_url(share_id: str) -> str:
    return f"{get_settings().site_url}/p/{share_id}"


def direct_url(share_id: str) -> str:
    return f"{get_settings().site_url}/i/{share_id}"


def view_model(disclosure: Disclosure) -> BaseModel:
    """Serialize a disclosure; gated disclosures never carry content or file fields."""
    share = disclosure.share
    if disclosure.gated:
        return ShareMetadataResponse(
            paste_id=share.id,
            title=share.title,
            paste_type=share.syntax,
            expires_at=share.expires_at,
            created_at=share.created_at,
            burn_after_read=share.burn_after_read,
        )

    fields = dict(
        paste_id=share.id,
        paste_content=share.content,
        paste_type=share.syntax,
        title=share.title,
        expires_at=share.expires_at,
        created_at=share.created_at,
        views=disclosure.views,
        burned=disclosure.burned,
    )
    if share.is_file:
        return FileShareViewResponse(
            **fields,
            file_path=share.file_path,
            file_name=share.file_name,
            file_size=share.file_size,
            file_type=share.file_type,
            content_type=share.content_type,
        )
    return ShareViewResponse(**fields)


def raw_response(share: Share) -> PlainTextResponse:
    return PlainTextResponse(share.content, media_type="text/plain; charset=utf-8")


def file_response(disclosure: Disclosure) -> Response:
    return Response(
        content=disclosure.data,
        media_type=disclosure.share.file_type or "application/octet-stream",
        headers={"Cache-Control": IMMUTABLE_CACHE},
    )


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInput("Invalid JSON in request body")
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    return body


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def _form_bool(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _form_str(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# ============== Action handlers ==============


async def handle_create(ctx: ActionContext) -> Response:
    try:
        data = ShareCreate.model_validate(await _read_json(ctx.request))
    except ValidationError as e:
        raise InvalidInput(_validation_message(e))

    share = await ctx.service.create_share(
        data, user_id=ctx.caller.user_id if ctx.caller else None
    )
    return _json(
        ShareCreatedResponse(
            paste_id=share.id,
            url=share_url(share.id),
            protected=share.is_protected,
            burn_after_read=share.burn_after_read,
        ),
        status_code=status.HTTP_201_CREATED,
    )


async def handle_upload(ctx: ActionContext) -> Response:
    form = await ctx.request.form()
    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        raise InvalidInput("File is required")

    # 한도 + 1 바이트까지만 읽는다 (초과분은 서비스가 413 처리)
    limit = upload_size_limit(upload.filename or "", upload.content_type)
    file_content = await upload.read(limit + 1)
    share = await ctx.service.create_file_share(
        file_content=file_content,
        filename=upload.filename or "",
        mime_type=upload.content_type,
        user_id=ctx.caller.user_id if ctx.caller else None,
        title=_form_str(form.get("title")),
        expiration=_form_str(form.get("expiration")),
        password=_form_str(form.get("password")),
        burn_after_read=_form_bool(form.get("burn_after_read")),
    )
    return _json(
        FileShareCreatedResponse(
            paste_id=share.id,
            url=share_url(share.id),
            protected=share.is_protected,
            burn_after_read=share.burn_after_read,
            direct_url=direct_url(share.id),
            file_name=share.file_name,
            file_size=share.file_size,
            content_type=share.content_type,
        ),
        status_code=status.HTTP_201_CREATED,
    )


async def handle_get(ctx: ActionContext) -> Response:
    disclosure = await ctx.service.disclose(ctx.require_id(), action="get")
    return _json(view_model(disclosure))


async def handle_verify_get(ctx: ActionContext) -> Response:
    share_id = ctx.require_id()
    settings = get_settings()
    enforce_ip_limit(ctx.request, f"{settings.rate_limit_verify_per_minute}/minute", "verify")

    try:
        body = PasswordVerify.model_validate(await _read_json(ctx.request))
    except ValidationError as e:
        raise InvalidInput(_validation_message(e))
    if not body.password:
        raise InvalidInput("Password required")

    disclosure = await ctx.service.disclose(share_id, password=body.password, action="verify")
    return _json(view_model(disclosure))


async def handle_raw(ctx: ActionContext) -> Response:
    disclosure = await ctx.service.disclose(
        ctx.require_id(), allow_gate=False, text_only=True, action="raw"
    )
    return raw_response(disclosure.share)


async def handle_img(ctx: ActionContext) -> Response:
    disclosure = await ctx.service.disclose_file(ctx.require_id())
    return file_response(disclosure)


async def handle_list(ctx: ActionContext) -> Response:
    caller = ctx.require_caller()
    shares = await ctx.service.list_shares(caller.user_id)
    return _json(
        ShareListResponse(
            pastes=[
                ShareSummary(
                    paste_id=share.id,
                    title=share.title,
                    paste_type=share.syntax,
                    content_type=share.content_type,
                    expires_at=share.expires_at,
                    created_at=share.created_at,
                    views=share.views,
                    protected=share.is_protected,
                    burn_after_read=share.burn_after_read,
                )
                for share in shares
            ]
        )
    )


async def handle_delete(ctx: ActionContext) -> Response:
    caller = ctx.require_caller()
    await ctx.service.delete_share(ctx.require_id(), caller.user_id)
    return _json(ShareDeletedResponse())


ACTION_HANDLERS: Dict[PasteAction, Handler] = {
    PasteAction.CREATE: handle_create,
    PasteAction.UPLOAD: handle_upload,
    PasteAction.GET: handle_get,
    PasteAction.VERIFY_GET: handle_verify_get,
    PasteAction.RAW: handle_raw,
    PasteAction.IMG: handle_img,
    PasteAction.LIST: handle_list,
    PasteAction.DELETE: handle_delete,
}


# ============== Dispatcher ==============


def _check_caller(action: PasteAction, caller: Optional[Caller]) -> None:
    if caller is not None:
        return
    if action in AUTH_REQUIRED:
        raise Unauthorized()
    if action in CREATE_ACTIONS and not get_settings().allow_anonymous_create:
        raise Unauthorized(hint=API_KEY_HINT)


async def _admit(request: Request, caller: Optional[Caller]) -> RateLimitResult:
    # 익명 호출자는 IP 기준 버킷
    key_hash = caller.key_hash if caller else anonymous_bucket_key(get_client_ip(request))
    quota = await get_rate_limiter().check_and_consume(key_hash)
    if not quota.allowed:
        logger.warning(
            "API quota exceeded",
            extra={
                "event": "rate_limit",
                "user_id": caller.user_id if caller else None,
                "limit": quota.limit,
            },
        )
        raise RateLimited(retry_after=quota.reset_seconds, headers=quota.headers())
    return quota


async def dispatch(
    request: Request,
    segment: str,
    share_id: Optional[str],
    verify: Optional[str],
    db: AsyncSession,
    storage: ObjectStorageService,
    caller: Optional[Caller],
) -> Response:
    action = resolve_action(request.method, segment, bool(share_id), bool(verify))
    _check_caller(action, caller)
    quota = await _admit(request, caller)

    ctx = ActionContext(
        request=request,
        service=ShareService(db, storage),
        caller=caller,
        share_id=share_id,
    )
    try:
        response = await ACTION_HANDLERS[action](ctx)
    except ShareError as e:
        # 오류 응답에도 남은 쿼터를 알려준다
        e.headers = {**quota.headers(), **(e.headers or {})}
        raise
    except SQLAlchemyError as e:
        db_errors_total.inc()
        logger.error(
            "Share store failure",
            extra={
                "event": "db",
                "action": action.value,
                "error_type": type(e).__name__,
                "error": str(e)[:200],
            },
        )
        error = Internal()
        error.headers = quota.headers()
        raise error from e
    response.headers.update(quota.headers())
    return response


@router.api_route("", methods=["GET", "POST", "DELETE"], include_in_schema=False)
async def paste_root(
    request: Request,
    id: Optional[str] = Query(None, max_length=64),
    verify: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
    caller: Optional[Caller] = Depends(get_optional_caller),
) -> Response:
    """Action inferred from the method: GET (get or list), POST (create), DELETE."""
    return await dispatch(request, "", id, verify, db, storage, caller)


@router.api_route(
    "/{segment}",
    methods=["GET", "POST", "DELETE"],
    summary="Share API action",
)
async def paste_action(
    request: Request,
    segment: str,
    id: Optional[str] = Query(None, max_length=64),
    verify: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
    caller: Optional[Caller] = Depends(get_optional_caller),
) -> Response:
    """
    Share API.

    - **POST create**: JSON `{content, title?, syntax?, expiration?, password?, burn_after_read?}`
    - **POST upload**: multipart `file` plus the same options as form fields
    - **GET get?id=**: full view, or metadata only if password protected
    - **POST get?id=&verify=1**: JSON `{password}`, full view on success (may burn)
    - **GET raw?id=**: text/plain content (403 if password protected)
    - **GET img?id=**: file bytes (403 if password protected)
    - **GET list**: caller's shares (API key required)
    - **DELETE delete?id=**: owner-only delete (API key required)
    """
    return await dispatch(request, segment, id, verify, db, storage, caller)
