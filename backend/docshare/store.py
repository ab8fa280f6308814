"""
Persistence for share links and their access log.

Both classes wrap a session handed in by the caller; neither opens its own
connections.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError
from .logging_config import get_logger, mask_link_id
from .models import Document, ShareLink, ShareLinkLog
from .utils import detect_user_agent_type, generate_link_id

logger = get_logger(__name__)

# Constants for retry logic
DEFAULT_MAX_ATTEMPTS = 5
RETRY_BASE_DELAY = 0.01  # seconds


@dataclass
class ViewMetadata:
    """Optional per-view fields beyond IP address and user agent."""

    location: Optional[dict[str, Any]] = None
    viewer_email: Optional[str] = None
    session_duration: Optional[int] = None
    extra: dict[str, str] = field(default_factory=dict)


class LinkStore:
    """Durable storage and owner-scoped retrieval of share links."""

    def __init__(
        self,
        session: AsyncSession,
        id_generator: Callable[[], str] = generate_link_id,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.session = session
        self.id_generator = id_generator
        self.max_attempts = max(1, max_attempts)

    async def create(
        self,
        document_id: str,
        creator_id: Optional[str],
        expires_at: Optional[datetime] = None,
        max_views: Optional[int] = None,
    ) -> ShareLink:
        """
        Persist a new link under a freshly generated identifier.

        Uniqueness is enforced by the ``link_id`` unique constraint; a
        collision rolls back and retries with a new identifier. Any other
        integrity failure (such as a vanished document) is re-raised.
        """
        for attempt in range(self.max_attempts):
            candidate = self.id_generator()
            link = ShareLink(
                link_id=candidate,
                document_id=document_id,
                created_by=creator_id,
                expires_at=expires_at,
                max_views=max_views,
            )
            self.session.add(link)
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                if await self.find_by_link_id(candidate) is None:
                    raise
                if attempt < self.max_attempts - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)  # Exponential backoff
                    logger.info(f"Link id collision on {mask_link_id(candidate)}, retrying in {delay}s (attempt {attempt + 1})")
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Failed to create share link after {self.max_attempts} attempts: {e}")
                raise ConflictError() from e

            await self.session.refresh(link)
            return link

        raise ConflictError()

    async def find_by_link_id(self, link_id: str) -> Optional[ShareLink]:
        """Look up a link by its public identifier. No ownership filter."""
        result = await self.session.execute(
            select(ShareLink).where(ShareLink.link_id == link_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _managed_by(owner_id: str):
        """Links the user created, or links on documents the user owns."""
        return (
            select(ShareLink)
            .join(Document, ShareLink.document_id == Document.id)
            .where(or_(ShareLink.created_by == owner_id, Document.owner_id == owner_id))
        )

    async def find_by_owner(self, owner_id: str, document_id: Optional[str] = None) -> list[ShareLink]:
        stmt = self._managed_by(owner_id)
        if document_id:
            stmt = stmt.where(ShareLink.document_id == document_id)
        stmt = stmt.order_by(ShareLink.created_at.desc(), ShareLink.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_document(self, document_id: str, owner_id: str) -> list[ShareLink]:
        return await self.find_by_owner(owner_id, document_id=document_id)

    async def delete_for_owner(self, link_id: str, owner_id: str) -> bool:
        """Delete a link ``owner_id`` manages. Logs go with it by cascade."""
        result = await self.session.execute(
            self._managed_by(owner_id).where(ShareLink.link_id == link_id)
        )
        link = result.scalar_one_or_none()
        if not link:
            return False

        await self.session.delete(link)
        await self.session.commit()
        return True

    async def document_for_owner(
        self,
        document_id: str,
        owner_id: str,
        company_id: Optional[str] = None,
    ) -> Optional[Document]:
        """Return the document if the owner (or a member of its company) may share it."""
        document = await self.session.get(Document, document_id)
        if document is None:
            return None
        if document.owner_id == owner_id:
            return document
        if company_id and document.company_id == company_id:
            return document
        return None


class AccessLog:
    """Append-only store of view events keyed by link identifier."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        link_id: str,
        ip_address: str,
        user_agent: str,
        timestamp: datetime,
        metadata: Optional[ViewMetadata] = None,
    ) -> ShareLinkLog:
        metadata = metadata or ViewMetadata()
        entry = ShareLinkLog(
            link_id=link_id,
            timestamp=timestamp,
            ip_address=ip_address,
            user_agent=user_agent,
            device_type=detect_user_agent_type(user_agent),
            location=metadata.location,
            viewer_email=metadata.viewer_email,
            session_duration=metadata.session_duration,
            extra=metadata.extra or None,
        )
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def count_for_link(self, link_id: str) -> int:
        result = await self.session.scalar(
            select(func.count(ShareLinkLog.id)).where(ShareLinkLog.link_id == link_id)
        )
        return int(result or 0)
