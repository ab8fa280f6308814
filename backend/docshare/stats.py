"""
Read-only aggregation over share links and their access log.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ShareLink, ShareLinkLog
from .utils import normalize_utc


@dataclass
class LinkStats:
    link_id: str
    document_id: str
    view_count: int
    last_opened: Optional[datetime]
    unique_viewers: int
    expires_at: Optional[datetime]
    created_at: Optional[datetime]
    devices: dict[str, int] = field(default_factory=dict)


@dataclass
class DocumentStats:
    document_id: str
    total_shares: int
    total_views: int
    last_viewed: Optional[datetime]


class StatsAggregator:
    """Computes view statistics from stored rows. Never writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def link_stats(self, link_id: str) -> Optional[LinkStats]:
        link = (
            await self.session.execute(select(ShareLink).where(ShareLink.link_id == link_id))
        ).scalar_one_or_none()
        if link is None:
            return None

        # COUNT(DISTINCT ...) skips NULL addresses
        view_count, last_opened, unique_viewers = (
            await self.session.execute(
                select(
                    func.count(ShareLinkLog.id),
                    func.max(ShareLinkLog.timestamp),
                    func.count(distinct(ShareLinkLog.ip_address)),
                ).where(ShareLinkLog.link_id == link_id)
            )
        ).one()

        device_rows = await self.session.execute(
            select(ShareLinkLog.device_type, func.count(ShareLinkLog.id))
            .where(ShareLinkLog.link_id == link_id)
            .group_by(ShareLinkLog.device_type)
        )
        devices = {(device or "unknown"): count for device, count in device_rows.all()}

        return LinkStats(
            link_id=link.link_id,
            document_id=link.document_id,
            view_count=int(view_count or 0),
            last_opened=normalize_utc(last_opened),
            unique_viewers=int(unique_viewers or 0),
            expires_at=normalize_utc(link.expires_at),
            created_at=normalize_utc(link.created_at),
            devices=devices,
        )

    async def document_stats(self, document_id: str) -> DocumentStats:
        total_shares = await self.session.scalar(
            select(func.count(ShareLink.id)).where(ShareLink.document_id == document_id)
        )
        total_views, last_viewed = (
            await self.session.execute(
                select(func.count(ShareLinkLog.id), func.max(ShareLinkLog.timestamp))
                .join(ShareLink, ShareLink.link_id == ShareLinkLog.link_id)
                .where(ShareLink.document_id == document_id)
            )
        ).one()

        return DocumentStats(
            document_id=document_id,
            total_shares=int(total_shares or 0),
            total_views=int(total_views or 0),
            last_viewed=normalize_utc(last_viewed),
        )
