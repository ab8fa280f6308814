"""
Tests for the access-control core: creation, resolution, logging, stats.
"""

import pytest
import sys
from datetime import timedelta
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

sys.path.insert(0, str(Path(__file__).parent.parent))

from docshare.auth import Principal
from docshare.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from docshare.models import Document, ShareLink, ShareLinkLog, User
from docshare.services import LinkState
from docshare.store import LinkStore, ViewMetadata

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class TestCreateLink:
    """Tests for LinkAccessController.create_link."""

    async def test_creates_link_for_owned_document(self, controller, principal, document):
        link = await controller.create_link(principal, document.id)
        assert len(link.link_id) == 12
        assert link.document_id == "doc-1"
        assert link.created_by == principal.user_id
        assert link.expires_at is None

    async def test_identifiers_are_unique(self, controller, principal, document):
        links = [await controller.create_link(principal, "doc-1") for _ in range(25)]
        assert len({link.link_id for link in links}) == 25

    async def test_missing_document_id_rejected(self, controller, principal):
        with pytest.raises(ValidationError):
            await controller.create_link(principal, None)
        with pytest.raises(ValidationError):
            await controller.create_link(principal, "   ")

    async def test_past_expiry_is_stored_and_resolves_expired(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1", expires_at=clock() - timedelta(minutes=1))
        assert link.link_id

        resolution = await controller.resolve(link.link_id)
        assert resolution.state is LinkState.EXPIRED
        with pytest.raises(ExpiredError):
            await controller.access(link.link_id)

    async def test_unknown_document_is_not_found(self, controller, principal, document):
        with pytest.raises(NotFoundError):
            await controller.create_link(principal, "doc-missing")

    async def test_other_tenant_cannot_share_document(self, controller, document, other_user):
        outsider = Principal(user_id=other_user.id, company_id=other_user.company_id)
        with pytest.raises(NotFoundError):
            await controller.create_link(outsider, "doc-1")

    async def test_company_member_can_share_document(self, controller, admin_db, document):
        admin_db.add(User(id="user-member", email="member@example.com", company_id="company-a"))
        await admin_db.commit()
        member = Principal(user_id="user-member", company_id="company-a")

        link = await controller.create_link(member, "doc-1")
        assert link.created_by == "user-member"

    async def test_collision_retries_with_new_identifier(self, controller_factory, principal, document):
        ids = iter(["collide00001", "collide00001", "fresh0000001"])
        controller = controller_factory(id_generator=lambda: next(ids))

        first = await controller.create_link(principal, "doc-1")
        assert first.link_id == "collide00001"

        second = await controller.create_link(principal, "doc-1")
        assert second.link_id == "fresh0000001"

    async def test_persistent_collision_raises_conflict(self, controller_factory, principal, document):
        controller = controller_factory(id_generator=lambda: "always000001", max_create_attempts=2)
        await controller.create_link(principal, "doc-1")

        with pytest.raises(ConflictError):
            await controller.create_link(principal, "doc-1")

    async def test_foreign_key_failure_is_not_retried(self, admin_db, owner):
        generated = []

        def generator():
            generated.append(f"fkfail{len(generated):06d}")
            return generated[-1]

        store = LinkStore(admin_db, id_generator=generator, max_attempts=3)
        with pytest.raises(IntegrityError):
            await store.create(document_id="doc-missing", creator_id=owner.id)
        assert len(generated) == 1

    async def test_document_removed_during_create_is_not_found(self, controller, principal, document, monkeypatch):
        async def stale_lookup(*args, **kwargs):
            return Document(id="doc-gone", owner_id=principal.user_id)

        monkeypatch.setattr(controller.owner_links, "document_for_owner", stale_lookup)
        with pytest.raises(NotFoundError, match="Document not found"):
            await controller.create_link(principal, "doc-gone")


class TestResolve:
    """Tests for link resolution states."""

    async def test_unknown_link_not_found(self, controller):
        resolution = await controller.resolve("doesnotexist")
        assert resolution.state is LinkState.NOT_FOUND
        with pytest.raises(NotFoundError):
            await controller.access("doesnotexist")

    async def test_link_without_expiry_is_active(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1")
        clock.advance(days=3650)
        assert (await controller.resolve(link.link_id)).state is LinkState.ACTIVE

    async def test_expiration_is_monotonic(self, controller, principal, document, clock):
        start = clock()
        expires_at = start + timedelta(hours=1)
        link = await controller.create_link(principal, "doc-1", expires_at=expires_at)

        for offset in (timedelta(0), timedelta(minutes=59), timedelta(hours=1) - timedelta(microseconds=1)):
            clock.current = start + offset
            assert (await controller.resolve(link.link_id)).state is LinkState.ACTIVE

        for offset in (timedelta(hours=1), timedelta(hours=1, seconds=1), timedelta(days=30)):
            clock.current = start + offset
            assert (await controller.resolve(link.link_id)).state is LinkState.EXPIRED

    async def test_expired_link_raises_expired_not_not_found(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1", expires_at=clock() + timedelta(hours=1))
        clock.advance(hours=2)

        with pytest.raises(ExpiredError) as exc_info:
            await controller.access(link.link_id)
        assert exc_info.value.status_code == 410

    async def test_access_returns_document(self, controller, principal, document):
        link = await controller.create_link(principal, "doc-1")
        resolved = await controller.access(link.link_id)
        assert resolved.document_id == "doc-1"


class TestMaxViews:
    """Tests for the view-cap toggle."""

    async def test_max_views_not_enforced_by_default(self, controller, principal, document):
        link = await controller.create_link(principal, "doc-1", max_views=1)
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)

        assert (await controller.resolve(link.link_id)).state is LinkState.ACTIVE

    async def test_max_views_enforced_when_enabled(self, controller_factory, principal, document):
        controller = controller_factory(enforce_max_views=True)
        link = await controller.create_link(principal, "doc-1", max_views=2)

        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        assert (await controller.resolve(link.link_id)).state is LinkState.ACTIVE

        await controller.log_view(link.link_id, "198.51.100.2", CHROME_UA)
        resolution = await controller.resolve(link.link_id)
        assert resolution.state is LinkState.EXPIRED
        assert resolution.view_limit_reached is True

        with pytest.raises(ExpiredError, match="view limit"):
            await controller.access(link.link_id)


class TestLogView:
    """Tests for view logging."""

    async def test_log_unknown_link_not_found(self, controller):
        with pytest.raises(NotFoundError):
            await controller.log_view("doesnotexist", "198.51.100.1", CHROME_UA)

    async def test_log_missing_link_id_rejected(self, controller):
        with pytest.raises(ValidationError):
            await controller.log_view("", "198.51.100.1", CHROME_UA)

    async def test_log_uses_server_clock(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1")
        entry = await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        assert entry.timestamp == clock()
        assert entry.device_type == "desktop"

    async def test_log_against_expired_link_is_recorded_by_default(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1", expires_at=clock() + timedelta(hours=1))
        clock.advance(hours=2)

        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        stats = await controller.link_stats(link.link_id)
        assert stats.view_count == 1

    async def test_gated_logging_rejects_expired_link(self, controller_factory, principal, document, clock):
        controller = controller_factory(gate_logging_on_active_state=True)
        link = await controller.create_link(principal, "doc-1", expires_at=clock() + timedelta(hours=1))

        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        clock.advance(hours=2)

        with pytest.raises(ExpiredError):
            await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)

    async def test_optional_metadata_is_stored(self, controller, principal, document, public_db):
        link = await controller.create_link(principal, "doc-1")
        metadata = ViewMetadata(
            location={"country": "DE", "city": "Berlin"},
            viewer_email="viewer@example.com",
            session_duration=42,
            extra={"campaign": "spring"},
        )
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA, metadata)

        entry = (
            await public_db.execute(select(ShareLinkLog).where(ShareLinkLog.link_id == link.link_id))
        ).scalar_one()
        assert entry.location == {"country": "DE", "city": "Berlin"}
        assert entry.viewer_email == "viewer@example.com"
        assert entry.session_duration == 42
        assert entry.extra == {"campaign": "spring"}


class TestStats:
    """Tests for aggregated statistics."""

    async def test_zero_log_link(self, controller, principal, document):
        link = await controller.create_link(principal, "doc-1")
        stats = await controller.link_stats(link.link_id)
        assert stats.view_count == 0
        assert stats.unique_viewers == 0
        assert stats.last_opened is None
        assert stats.devices == {}

    async def test_unknown_link_stats_not_found(self, controller):
        with pytest.raises(NotFoundError):
            await controller.link_stats("doesnotexist")

    async def test_view_count_with_interleaving(self, controller, principal, document):
        first = await controller.create_link(principal, "doc-1")
        second = await controller.create_link(principal, "doc-1")

        for i in range(5):
            await controller.log_view(first.link_id, f"198.51.100.{i}", CHROME_UA)
            if i % 2 == 0:
                await controller.log_view(second.link_id, "203.0.113.9", CHROME_UA)

        assert (await controller.link_stats(first.link_id)).view_count == 5
        assert (await controller.link_stats(second.link_id)).view_count == 3

    async def test_unique_viewers_counts_distinct_addresses(self, controller, principal, document):
        link = await controller.create_link(principal, "doc-1")
        addresses = ["198.51.100.1", "198.51.100.2", "198.51.100.3"]
        for i in range(7):
            await controller.log_view(link.link_id, addresses[i % 3], CHROME_UA)

        stats = await controller.link_stats(link.link_id)
        assert stats.view_count == 7
        assert stats.unique_viewers == 3

    async def test_last_opened_is_latest_timestamp(self, controller, principal, document, clock):
        link = await controller.create_link(principal, "doc-1")
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        clock.advance(minutes=30)
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)

        stats = await controller.link_stats(link.link_id)
        assert stats.last_opened == clock()

    async def test_devices_breakdown(self, controller, principal, document):
        link = await controller.create_link(principal, "doc-1")
        await controller.log_view(link.link_id, "198.51.100.1", CHROME_UA)
        await controller.log_view(link.link_id, "198.51.100.2", "unknown")

        stats = await controller.link_stats(link.link_id)
        assert stats.devices == {"desktop": 1, "unknown": 1}

    async def test_document_rollup(self, controller, principal, document, clock):
        first = await controller.create_link(principal, "doc-1")
        second = await controller.create_link(principal, "doc-1")
        await controller.log_view(first.link_id, "198.51.100.1", CHROME_UA)
        clock.advance(minutes=5)
        await controller.log_view(second.link_id, "198.51.100.2", CHROME_UA)

        stats = await controller.document_stats(principal, "doc-1")
        assert stats.total_shares == 2
        assert stats.total_views == 2
        assert stats.last_viewed == clock()

    async def test_document_rollup_hidden_from_other_tenant(self, controller, document, other_user):
        outsider = Principal(user_id=other_user.id, company_id=other_user.company_id)
        with pytest.raises(NotFoundError):
            await controller.document_stats(outsider, "doc-1")


class TestOwnership:
    """Tests for owner isolation and revocation."""

    async def test_list_links_scoped_to_owner(self, controller, principal, document, other_user):
        await controller.create_link(principal, "doc-1")
        await controller.create_link(principal, "doc-1")

        assert len(await controller.list_links(principal)) == 2
        assert len(await controller.list_links(principal, document_id="doc-1")) == 2
        assert await controller.list_links(principal, document_id="doc-other") == []

        outsider = Principal(user_id=other_user.id)
        assert await controller.list_links(outsider) == []

    async def test_revoke_removes_link_and_logs(self, controller, principal, document, public_db):
        link = await controller.create_link(principal, "doc-1")
        link_id = link.link_id
        await controller.log_view(link_id, "198.51.100.1", CHROME_UA)

        await controller.revoke_link(principal, link_id)

        assert (await controller.resolve(link_id)).state is LinkState.NOT_FOUND
        remaining = await public_db.scalar(
            select(func.count(ShareLinkLog.id)).where(ShareLinkLog.link_id == link_id)
        )
        assert remaining == 0

    async def test_revoke_by_other_owner_not_found(self, controller, principal, document, other_user):
        link = await controller.create_link(principal, "doc-1")
        outsider = Principal(user_id=other_user.id)

        with pytest.raises(NotFoundError):
            await controller.revoke_link(outsider, link.link_id)
        assert (await controller.resolve(link.link_id)).state is LinkState.ACTIVE

    async def test_document_delete_cascades(self, controller, principal, document, admin_db, public_db):
        link = await controller.create_link(principal, "doc-1")
        link_id = link.link_id
        await controller.log_view(link_id, "198.51.100.1", CHROME_UA)

        doc = await admin_db.get(Document, "doc-1")
        await admin_db.delete(doc)
        await admin_db.commit()

        assert await public_db.scalar(select(func.count(ShareLink.id))) == 0
        assert await public_db.scalar(select(func.count(ShareLinkLog.id))) == 0

    async def test_link_survives_creator_deletion(self, controller, admin_db, public_db, document):
        admin_db.add(User(id="user-member", email="member@example.com", company_id="company-a"))
        await admin_db.commit()
        member = Principal(user_id="user-member", company_id="company-a")
        link = await controller.create_link(member, "doc-1")
        link_id = link.link_id

        user = await admin_db.get(User, "user-member")
        await admin_db.delete(user)
        await admin_db.commit()

        created_by = await public_db.scalar(
            select(ShareLink.created_by).where(ShareLink.link_id == link_id)
        )
        assert created_by is None
        assert (await controller.resolve(link_id)).state is LinkState.ACTIVE

    async def test_document_owner_manages_link_after_creator_deletion(self, controller, principal, admin_db, document):
        admin_db.add(User(id="user-member", email="member@example.com", company_id="company-a"))
        await admin_db.commit()
        member = Principal(user_id="user-member", company_id="company-a")
        link = await controller.create_link(member, "doc-1")
        link_id = link.link_id

        user = await admin_db.get(User, "user-member")
        await admin_db.delete(user)
        await admin_db.commit()

        assert [item.link_id for item in await controller.list_links(principal)] == [link_id]
        await controller.revoke_link(principal, link_id)
        assert (await controller.resolve(link_id)).state is LinkState.NOT_FOUND
