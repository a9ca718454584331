"""
Direct links for embedding: /raw/{id}, /i/{id}, /embed/{id}.

raw/i는 API의 raw/img 액션과 같은 공개 규칙(만료, 비밀번호 거부, 조회수/burn)을 따른다.
API 키 쿼터 대신 IP 기준 rate limit만 적용한다.
"""
import html
import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.dependencies.auth import get_storage
from app.middlewares.rate_limit_middleware import get_rate_limit_decorator
from app.routers.pastes import file_response, raw_response, share_url
from app.services.object_storage import ObjectStorageService
from app.services.share import ShareService

logger = logging.getLogger("app.links")
router = APIRouter(tags=["Direct Links"])

links_rate_limit = get_rate_limit_decorator(f"{get_settings().rate_limit_links_per_minute}/minute")

EMBED_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="robots" content="noindex">
<title>{title}</title>
</head>
<body>
<pre data-language="{syntax}"><code class="language-{syntax}">{content}</code></pre>
<a href="{url}" target="_blank" rel="noopener">View on {app_name}</a>
</body>
</html>
"""


@router.get("/raw/{share_id}", summary="Raw text of a share")
@links_rate_limit
async def raw_link(
    share_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
) -> Response:
    """Plain text content. Password protected shares are refused (403)."""
    disclosure = await ShareService(db, storage).disclose(
        share_id, allow_gate=False, text_only=True, action="raw"
    )
    return raw_response(disclosure.share)


@router.get("/i/{share_id}", summary="Direct file link")
@links_rate_limit
async def image_link(
    share_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
) -> Response:
    """File bytes with long-lived cache headers. Password protected shares are refused (403)."""
    disclosure = await ShareService(db, storage).disclose_file(share_id)
    return file_response(disclosure)


@router.get("/embed/{share_id}", response_class=HTMLResponse, summary="Embeddable render")
@links_rate_limit
async def embed_link(
    share_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage),
) -> HTMLResponse:
    """
    Minimal read-only HTML render.
    Refuses password protected and burn-after-read shares (403); does not count a view.
    """
    share = await ShareService(db, storage).peek_embed(share_id)
    page = EMBED_TEMPLATE.format(
        title=html.escape(share.title or share.id),
        syntax=html.escape(share.syntax),
        content=html.escape(share.content),
        url=html.escape(share_url(share.id)),
        app_name=html.escape(get_settings().app_name),
    )
    return HTMLResponse(page)
