import uuid

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .utils import MAX_IP_LENGTH


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Issuing principal. Managed by the identity collaborator; mirrored here for foreign keys."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(320), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="user")
    company_id = Column(String(36), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class Document(Base):
    """Shared resource. Only its identity and ownership matter to share links."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(Text, nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    share_links = relationship(
        "ShareLink",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Document(id={self.id}, title={self.title[:50]})>"


class ShareLink(Base):
    """Model for issued share links."""

    __tablename__ = "share_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    link_id = Column(String(32), unique=True, nullable=False)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_views = Column(Integer, nullable=True)
    allow_download = Column(Boolean, nullable=False, default=True)
    require_email = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    document = relationship("Document", back_populates="share_links")
    logs = relationship(
        "ShareLinkLog",
        back_populates="share_link",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_share_links_document_id", "document_id"),
        Index("idx_share_links_created_by", "created_by"),
    )

    def __repr__(self):
        return f"<ShareLink(link_id={self.link_id}, document_id={self.document_id})>"


class ShareLinkLog(Base):
    """Append-only view event for a share link."""

    __tablename__ = "share_link_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    link_id = Column(
        String(32),
        ForeignKey("share_links.link_id", ondelete="CASCADE"),
        nullable=False,
    )
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ip_address = Column(String(MAX_IP_LENGTH), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(20), nullable=True)  # desktop, mobile, tablet, bot, other
    location = Column(JSON, nullable=True)
    viewer_email = Column(String(320), nullable=True)
    session_duration = Column(Integer, nullable=True)  # seconds
    extra = Column(JSON, nullable=True)

    share_link = relationship("ShareLink", back_populates="logs")

    __table_args__ = (
        Index("idx_share_link_logs_link_timestamp", "link_id", "timestamp"),
    )

    def __repr__(self):
        return f"<ShareLinkLog(link_id={self.link_id}, at={self.timestamp})>"
