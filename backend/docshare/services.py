from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Principal
from .config import settings
from .errors import ExpiredError, NotFoundError, ValidationError
from .logging_config import get_logger, mask_link_id
from .models import ShareLink, ShareLinkLog
from .stats import DocumentStats, LinkStats, StatsAggregator
from .store import AccessLog, LinkStore, ViewMetadata
from .utils import generate_link_id, normalize_utc, utc_now

logger = get_logger(__name__)


class LinkState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a link identifier at a point in time."""

    state: LinkState
    link: Optional[ShareLink] = None
    view_limit_reached: bool = False

    @property
    def is_active(self) -> bool:
        return self.state is LinkState.ACTIVE


class LinkAccessController:
    """
    Issues share links, resolves them against the validity policy, and
    records views.

    The controller is built per request from two store sessions: ``admin``
    serves the authenticated owner paths and ``public`` serves anonymous
    access. It never opens connections itself.

    Policy toggles:
        enforce_max_views: a link whose log count reached ``max_views``
            resolves as expired.
        gate_logging_on_active_state: log writes require an active link.
            Off by default, so attempts against expired links are recorded.
    """

    def __init__(
        self,
        admin_session: AsyncSession,
        public_session: AsyncSession,
        *,
        enforce_max_views: bool = False,
        gate_logging_on_active_state: bool = False,
        clock: Callable[[], datetime] = utc_now,
        id_generator: Callable[[], str] = generate_link_id,
        max_create_attempts: int = 5,
    ):
        self.owner_links = LinkStore(admin_session, id_generator=id_generator, max_attempts=max_create_attempts)
        self.public_links = LinkStore(public_session)
        self.access_log = AccessLog(public_session)
        self.owner_stats = StatsAggregator(admin_session)
        self.public_stats = StatsAggregator(public_session)
        self.enforce_max_views = enforce_max_views
        self.gate_logging_on_active_state = gate_logging_on_active_state
        self.clock = clock

    @classmethod
    def from_settings(cls, admin_session: AsyncSession, public_session: AsyncSession, **overrides):
        options = dict(
            enforce_max_views=settings.ENFORCE_MAX_VIEWS,
            gate_logging_on_active_state=settings.GATE_LOGGING_ON_ACTIVE_STATE,
            max_create_attempts=settings.LINK_CREATE_MAX_ATTEMPTS,
        )
        options.update(overrides)
        return cls(admin_session, public_session, **options)

    def now(self) -> datetime:
        return normalize_utc(self.clock())

    async def create_link(
        self,
        principal: Principal,
        document_id: Optional[str],
        expires_at: Optional[datetime] = None,
        max_views: Optional[int] = None,
    ) -> ShareLink:
        """Issue a new link for a document the principal may share."""
        if not document_id or not document_id.strip():
            raise ValidationError("documentId is required")

        expires_at = normalize_utc(expires_at)

        if max_views is not None and max_views < 1:
            raise ValidationError("maxViews must be at least 1")

        document = await self.owner_links.document_for_owner(
            document_id.strip(), principal.user_id, principal.company_id
        )
        if document is None:
            # Same answer whether the document is missing or belongs to another tenant
            raise NotFoundError("Document not found")

        try:
            link = await self.owner_links.create(
                document_id=document.id,
                creator_id=principal.user_id,
                expires_at=expires_at,
                max_views=max_views,
            )
        except IntegrityError as e:
            # Document deleted after the visibility check
            logger.warning(f"Share link insert rejected for document {document.id}: {e.orig}")
            raise NotFoundError("Document not found") from e
        logger.info(f"Created share link {mask_link_id(link.link_id)} for document {link.document_id}")
        return link

    async def resolve(self, link_id: str) -> Resolution:
        """Compute the link's current state from stored data and the clock."""
        link = await self.public_links.find_by_link_id(link_id)
        if link is None:
            return Resolution(LinkState.NOT_FOUND)

        expires_at = normalize_utc(link.expires_at)
        if expires_at is not None and self.now() >= expires_at:
            return Resolution(LinkState.EXPIRED, link)

        if self.enforce_max_views and link.max_views is not None:
            views = await self.access_log.count_for_link(link.link_id)
            if views >= link.max_views:
                return Resolution(LinkState.EXPIRED, link, view_limit_reached=True)

        return Resolution(LinkState.ACTIVE, link)

    @staticmethod
    def _raise_for(resolution: Resolution) -> None:
        if resolution.state is LinkState.NOT_FOUND:
            raise NotFoundError()
        if resolution.state is LinkState.EXPIRED:
            if resolution.view_limit_reached:
                raise ExpiredError("Share link view limit reached")
            raise ExpiredError()

    async def access(self, link_id: str) -> ShareLink:
        """Return the link if it is active; raise NotFoundError or ExpiredError otherwise."""
        resolution = await self.resolve(link_id)
        self._raise_for(resolution)
        logger.debug(f"Resolved share link {mask_link_id(link_id)}")
        return resolution.link

    async def log_view(
        self,
        link_id: Optional[str],
        ip_address: str,
        user_agent: str,
        metadata: Optional[ViewMetadata] = None,
    ) -> ShareLinkLog:
        """Append a view event. Only existence is checked unless logging is gated."""
        if not link_id:
            raise ValidationError("linkId is required")

        if self.gate_logging_on_active_state:
            self._raise_for(await self.resolve(link_id))
        elif await self.public_links.find_by_link_id(link_id) is None:
            raise NotFoundError()

        return await self.access_log.append(
            link_id=link_id,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=self.now(),
            metadata=metadata,
        )

    async def list_links(self, principal: Principal, document_id: Optional[str] = None) -> list[ShareLink]:
        if document_id:
            return await self.owner_links.find_by_document(document_id, principal.user_id)
        return await self.owner_links.find_by_owner(principal.user_id)

    async def revoke_link(self, principal: Principal, link_id: str) -> None:
        """Delete a link the principal created or whose document it owns. Others look missing."""
        deleted = await self.owner_links.delete_for_owner(link_id, principal.user_id)
        if not deleted:
            raise NotFoundError()
        logger.info(f"Revoked share link {mask_link_id(link_id)}")

    async def link_stats(self, link_id: str) -> LinkStats:
        stats = await self.public_stats.link_stats(link_id)
        if stats is None:
            raise NotFoundError()
        return stats

    async def document_stats(self, principal: Principal, document_id: str) -> DocumentStats:
        document = await self.owner_links.document_for_owner(
            document_id, principal.user_id, principal.company_id
        )
        if document is None:
            raise NotFoundError("Document not found")
        return await self.owner_stats.document_stats(document.id)
