from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from .auth import Principal, get_current_principal
from .config import settings
from .database import get_admin_db, get_public_db
from .errors import RateLimitError
from .models import ShareLink
from .redis_client import RedisService
from .schemas import (
    CreateLinkRequest,
    ShareLinkResponse,
    ShareLinkListResponse,
    LinkAccessResponse,
    LogViewRequest,
    LogViewResponse,
    LinkStatsResponse,
    DocumentStatsResponse,
    ErrorResponse,
)
from .services import LinkAccessController
from .store import ViewMetadata
from .utils import UNKNOWN, normalize_utc, resolve_client_ip, resolve_user_agent
from .logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def get_controller(
    admin_db: AsyncSession = Depends(get_admin_db),
    public_db: AsyncSession = Depends(get_public_db),
) -> LinkAccessController:
    """Build the access-control core from the two request-scoped store sessions."""
    return LinkAccessController.from_settings(admin_db, public_db)


def get_client_ip(request: Request, explicit: Optional[str] = None) -> str:
    """Extract client IP: explicit value, then X-Forwarded-For, then the socket peer."""
    return resolve_client_ip(
        explicit,
        request.headers.get("X-Forwarded-For"),
        request.client.host if request.client else None,
    )


def get_connection_ip(request: Request) -> str:
    """Socket peer address. Ignores X-Forwarded-For, which the caller controls."""
    return request.client.host if request.client and request.client.host else UNKNOWN


async def enforce_rate_limit(scope: str, key: str, limit: int) -> None:
    allowed, _ = await RedisService.check_rate_limit(scope, key, limit)
    if not allowed:
        logger.warning(f"Rate limit exceeded for {scope}: {key}")
        raise RateLimitError()


def _link_response(link: ShareLink) -> ShareLinkResponse:
    return ShareLinkResponse(
        link_id=link.link_id,
        document_id=link.document_id,
        expires_at=normalize_utc(link.expires_at),
        created_by=link.created_by,
        created_at=normalize_utc(link.created_at),
        max_views=link.max_views,
    )


@router.post(
    "/links",
    status_code=201,
    response_model=ShareLinkResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    }
)
async def create_share_link(
    data: CreateLinkRequest,
    principal: Principal = Depends(get_current_principal),
    controller: LinkAccessController = Depends(get_controller),
):
    """Issue a new share link for a document."""
    await enforce_rate_limit("create", principal.user_id, settings.RATE_LIMIT_CREATE_PER_HOUR)

    link = await controller.create_link(
        principal,
        document_id=data.document_id,
        expires_at=data.expires_at,
        max_views=data.max_views,
    )
    return _link_response(link)


@router.get(
    "/links",
    response_model=ShareLinkListResponse,
    responses={401: {"model": ErrorResponse}}
)
async def list_share_links(
    document_id: Optional[str] = Query(None, alias="documentId"),
    principal: Principal = Depends(get_current_principal),
    controller: LinkAccessController = Depends(get_controller),
):
    """List the caller's links, optionally for one document."""
    links = await controller.list_links(principal, document_id=document_id)
    return ShareLinkListResponse(links=[_link_response(link) for link in links])


@router.get(
    "/links/{link_id}",
    response_model=LinkAccessResponse,
    responses={404: {"model": ErrorResponse}, 410: {"model": ErrorResponse}}
)
async def get_document_by_link(
    link_id: str,
    controller: LinkAccessController = Depends(get_controller),
):
    """Resolve a link anonymously. Expired links answer 410, unknown ones 404."""
    link = await controller.access(link_id)
    return LinkAccessResponse(
        document_id=link.document_id,
        link_id=link.link_id,
        expires_at=normalize_utc(link.expires_at),
        created_at=normalize_utc(link.created_at),
    )


@router.delete(
    "/links/{link_id}",
    status_code=204,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def revoke_share_link(
    link_id: str,
    principal: Principal = Depends(get_current_principal),
    controller: LinkAccessController = Depends(get_controller),
):
    """Delete one of the caller's links."""
    await controller.revoke_link(principal, link_id)
    return Response(status_code=204)


@router.post(
    "/links/{link_id}/log",
    status_code=201,
    response_model=LogViewResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        410: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    }
)
async def log_link_view(
    link_id: str,
    request: Request,
    data: Optional[LogViewRequest] = None,
    controller: LinkAccessController = Depends(get_controller),
):
    """Record a view of a link."""
    data = data or LogViewRequest()

    await enforce_rate_limit("log", get_connection_ip(request), settings.RATE_LIMIT_LOG_PER_HOUR)

    metadata = ViewMetadata(
        location=data.location.model_dump(exclude_none=True) if data.location else None,
        viewer_email=data.viewer_email,
        session_duration=data.session_duration,
        extra=data.extra,
    )
    entry = await controller.log_view(
        link_id,
        ip_address=get_client_ip(request, data.ip_address),
        user_agent=resolve_user_agent(data.user_agent, request.headers.get("User-Agent")),
        metadata=metadata,
    )
    return LogViewResponse(logged=True, timestamp=normalize_utc(entry.timestamp))


@router.get(
    "/links/{link_id}/stats",
    response_model=LinkStatsResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_link_stats(
    link_id: str,
    controller: LinkAccessController = Depends(get_controller),
):
    """Get view statistics for a link."""
    stats = await controller.link_stats(link_id)
    return LinkStatsResponse(
        link_id=stats.link_id,
        document_id=stats.document_id,
        view_count=stats.view_count,
        last_opened=stats.last_opened,
        expires_at=stats.expires_at,
        created_at=stats.created_at,
        unique_viewers=stats.unique_viewers,
        devices=stats.devices,
    )


@router.get(
    "/documents/{document_id}/stats",
    response_model=DocumentStatsResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def get_document_stats(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    controller: LinkAccessController = Depends(get_controller),
):
    """Roll up link statistics for one of the caller's documents."""
    stats = await controller.document_stats(principal, document_id)
    return DocumentStatsResponse(
        document_id=stats.document_id,
        total_shares=stats.total_shares,
        total_views=stats.total_views,
        last_viewed=stats.last_viewed,
    )
