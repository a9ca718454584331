"""Tests for the share lifecycle: create, disclose, burn, delete, list, expire."""
import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.database import async_session_maker
from app.exceptions import (
    Expired,
    Forbidden,
    InvalidInput,
    InvalidPassword,
    NotFound,
    PayloadTooLarge,
)
from app.models.share import ContentType, Share
from app.schemas.share import ShareCreate
from app.services.share import ShareService
from app.utils.file_types import MB
from app.utils.security import digest

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def create_text(service: ShareService, user_id="user-1", now=NOW, **fields) -> Share:
    data = ShareCreate(**{"content": "hello", **fields})
    return await service.create_share(data, user_id=user_id, now=now)


@pytest.fixture
def service(db_session, storage):
    return ShareService(db_session, storage)


class TestCreate:
    @pytest.mark.asyncio
    async def test_defaults(self, service):
        share = await create_text(service)
        assert len(share.id) == 8
        assert share.syntax == "plaintext"
        assert share.content_type == ContentType.TEXT.value
        assert share.views == 0
        assert share.expires_at is None
        assert share.password_hash is None
        assert not share.burn_after_read
        assert share.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_password_stored_as_digest(self, service):
        share = await create_text(service, password="s3cret")
        assert share.password_hash == digest("s3cret")
        assert share.is_protected

    @pytest.mark.asyncio
    async def test_expiration_resolved(self, service):
        share = await create_text(service, expiration="1d")
        assert share.expires_at == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_unknown_expiration_never_expires(self, service):
        share = await create_text(service, expiration="2h")
        assert share.expires_at is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   \n\t", None])
    async def test_blank_content_rejected(self, service, content):
        with pytest.raises(InvalidInput):
            await service.create_share(ShareCreate(content=content), user_id=None, now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_syntax_rejected(self, service):
        with pytest.raises(InvalidInput):
            await create_text(service, syntax="brainfuck")

    @pytest.mark.asyncio
    async def test_anonymous_share(self, service):
        share = await create_text(service, user_id=None)
        assert share.user_id is None


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_create_then_disclose(self, service):
        share = await create_text(service, syntax="plaintext")
        disclosure = await service.disclose(share.id, now=NOW)

        assert disclosure.share.content == "hello"
        assert disclosure.share.syntax == "plaintext"
        assert disclosure.views == 1
        assert not disclosure.burned
        assert not disclosure.gated

    @pytest.mark.asyncio
    async def test_missing_share(self, service):
        with pytest.raises(NotFound):
            await service.disclose("deadbeef", now=NOW)


class TestViews:
    @pytest.mark.asyncio
    async def test_sequential_reads_increment(self, service):
        share = await create_text(service)
        views = [(await service.disclose(share.id, now=NOW)).views for _ in range(5)]
        assert views == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_concurrent_reads_are_all_counted(self, database, storage):
        async with async_session_maker() as session:
            share = await create_text(ShareService(session, storage))

        async def read():
            async with async_session_maker() as session:
                return (await ShareService(session, storage).disclose(share.id, now=NOW)).views

        views = await asyncio.gather(*(read() for _ in range(5)))
        assert sorted(views) == [1, 2, 3, 4, 5]

        async with async_session_maker() as session:
            assert (await session.get(Share, share.id)).views == 5


class TestExpiry:
    @pytest.mark.asyncio
    async def test_readable_until_expiry(self, service):
        share = await create_text(service, expiration="1h")
        expires_at = NOW + timedelta(hours=1)

        disclosure = await service.disclose(share.id, now=expires_at - timedelta(seconds=1))
        assert disclosure.views == 1

        with pytest.raises(Expired):
            await service.disclose(share.id, now=expires_at)
        with pytest.raises(Expired):
            await service.disclose(share.id, now=expires_at + timedelta(days=30))

    @pytest.mark.asyncio
    async def test_expired_share_not_counted(self, service, db_session):
        share = await create_text(service, expiration="1h")
        with pytest.raises(Expired):
            await service.disclose(share.id, now=NOW + timedelta(hours=2))
        assert (await db_session.get(Share, share.id, populate_existing=True)).views == 0

    @pytest.mark.asyncio
    async def test_expired_burn_share_is_not_burned(self, service, db_session):
        share = await create_text(service, expiration="1h", burn_after_read=True)
        with pytest.raises(Expired):
            await service.disclose(share.id, now=NOW + timedelta(hours=2))
        assert await db_session.get(Share, share.id, populate_existing=True) is not None


class TestPasswordGate:
    @pytest.mark.asyncio
    async def test_gated_read_returns_metadata_only(self, service, db_session):
        share = await create_text(service, password="pw", title="secret notes")
        disclosure = await service.disclose(share.id, now=NOW)

        assert disclosure.gated
        assert disclosure.views == 0
        assert (await db_session.get(Share, share.id, populate_existing=True)).views == 0

    @pytest.mark.asyncio
    async def test_gated_read_is_idempotent(self, service):
        share = await create_text(service, password="pw")
        first = await service.disclose(share.id, now=NOW)
        second = await service.disclose(share.id, now=NOW)
        assert first.gated and second.gated
        assert first.views == second.views == 0

    @pytest.mark.asyncio
    async def test_wrong_password(self, service, db_session):
        share = await create_text(service, password="pw")
        with pytest.raises(InvalidPassword):
            await service.disclose(share.id, password="nope", now=NOW)
        assert (await db_session.get(Share, share.id, populate_existing=True)).views == 0

    @pytest.mark.asyncio
    async def test_correct_password(self, service):
        share = await create_text(service, password="pw")
        disclosure = await service.disclose(share.id, password="pw", now=NOW)
        assert not disclosure.gated
        assert disclosure.views == 1
        assert disclosure.share.content == "hello"

    @pytest.mark.asyncio
    async def test_password_on_unprotected_share(self, service):
        share = await create_text(service)
        with pytest.raises(InvalidPassword):
            await service.disclose(share.id, password="pw", now=NOW)

    @pytest.mark.asyncio
    async def test_raw_refuses_protected_share(self, service):
        share = await create_text(service, password="pw")
        with pytest.raises(Forbidden):
            await service.disclose(share.id, allow_gate=False, action="raw", now=NOW)

    @pytest.mark.asyncio
    async def test_gated_burn_share_survives_metadata_reads(self, service, db_session):
        share = await create_text(service, password="pw", burn_after_read=True)
        for _ in range(3):
            assert (await service.disclose(share.id, now=NOW)).gated

        disclosure = await service.disclose(share.id, password="pw", now=NOW)
        assert disclosure.burned
        assert await db_session.get(Share, share.id, populate_existing=True) is None


class TestBurnAfterRead:
    @pytest.mark.asyncio
    async def test_first_read_burns(self, service, db_session):
        share = await create_text(service, burn_after_read=True)
        disclosure = await service.disclose(share.id, now=NOW)

        assert disclosure.burned
        assert disclosure.views == 1
        assert disclosure.share.content == "hello"
        assert await db_session.get(Share, share.id, populate_existing=True) is None

        with pytest.raises(NotFound):
            await service.disclose(share.id, now=NOW)

    @pytest.mark.asyncio
    async def test_concurrent_reads_have_one_winner(self, database, storage):
        async with async_session_maker() as session:
            share = await create_text(ShareService(session, storage), burn_after_read=True)

        async def read():
            async with async_session_maker() as session:
                return await ShareService(session, storage).disclose(share.id, now=NOW)

        results = await asyncio.gather(*(read() for _ in range(4)), return_exceptions=True)
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]

        assert len(winners) == 1
        assert winners[0].burned
        assert winners[0].share.content == "hello"
        assert all(isinstance(e, NotFound) for e in losers)

    @pytest.mark.asyncio
    async def test_burned_file_blob_is_deleted(self, service, storage):
        share = await service.create_file_share(
            b"\x89PNG....", "cat.png", "image/png", user_id="user-1",
            burn_after_read=True, now=NOW,
        )
        disclosure = await service.disclose_file(share.id, now=NOW)
        assert disclosure.data == b"\x89PNG...."
        assert disclosure.burned

        from app.utils.background import drain

        await drain()
        assert share.file_path in storage.deleted


class TestFileShares:
    @pytest.mark.asyncio
    async def test_upload_image(self, service, storage):
        share = await service.create_file_share(
            b"GIF89a", "Cat Picture.gif", "image/gif", user_id="user-1", now=NOW,
        )
        assert share.content_type == ContentType.IMAGE.value
        assert share.file_name == "Cat Picture.gif"
        assert share.title == "Cat Picture.gif"
        assert share.file_size == 6
        assert share.file_type == "image/gif"
        assert share.file_path.startswith("user-1/")
        assert storage.blobs[share.file_path] == b"GIF89a"

    @pytest.mark.asyncio
    async def test_document_syntax_detected(self, service):
        share = await service.create_file_share(
            b"print('hi')", "main.py", "text/plain", user_id=None, title="script", now=NOW,
        )
        assert share.content_type == ContentType.DOCUMENT.value
        assert share.syntax == "python"
        assert share.title == "script"
        assert share.file_path.startswith("anonymous/")

    @pytest.mark.asyncio
    async def test_unsupported_type(self, service, storage):
        with pytest.raises(InvalidInput):
            await service.create_file_share(b"\x00\x00", "clip.mp4", "video/mp4", user_id=None, now=NOW)
        assert storage.blobs == {}

    @pytest.mark.asyncio
    async def test_empty_file(self, service):
        with pytest.raises(InvalidInput):
            await service.create_file_share(b"", "cat.png", "image/png", user_id=None, now=NOW)

    @pytest.mark.asyncio
    async def test_image_too_large(self, service, storage):
        with pytest.raises(PayloadTooLarge) as excinfo:
            await service.create_file_share(
                b"x" * (10 * MB + 1), "big.png", "image/png", user_id=None, now=NOW,
            )
        assert "10MB" in excinfo.value.message
        assert storage.blobs == {}

    @pytest.mark.asyncio
    async def test_archive_limit_is_larger(self, service):
        share = await service.create_file_share(
            b"x" * (10 * MB + 1), "big.zip", "application/zip", user_id=None, now=NOW,
        )
        assert share.content_type == ContentType.ARCHIVE.value

    @pytest.mark.asyncio
    async def test_disclose_file_protected(self, service):
        share = await service.create_file_share(
            b"GIF89a", "cat.gif", "image/gif", user_id=None, password="pw", now=NOW,
        )
        with pytest.raises(Forbidden):
            await service.disclose_file(share.id, now=NOW)

    @pytest.mark.asyncio
    async def test_disclose_file_on_text_share(self, service):
        share = await create_text(service)
        with pytest.raises(NotFound):
            await service.disclose_file(share.id, now=NOW)

    @pytest.mark.asyncio
    async def test_text_only_read_refuses_file_share(self, service, db_session, storage):
        share = await service.create_file_share(
            b"GIF89a", "cat.gif", "image/gif", user_id="user-1", burn_after_read=True, now=NOW,
        )
        with pytest.raises(NotFound):
            await service.disclose(share.id, allow_gate=False, text_only=True, now=NOW)

        db_session.expire_all()
        assert await db_session.get(Share, share.id) is not None
        assert share.file_path not in storage.deleted

    @pytest.mark.asyncio
    async def test_disclose_file_counts_view(self, service):
        share = await service.create_file_share(b"GIF89a", "cat.gif", "image/gif", user_id=None, now=NOW)
        assert (await service.disclose_file(share.id, now=NOW)).views == 1
        assert (await service.disclose(share.id, now=NOW)).views == 2


class TestEmbed:
    @pytest.mark.asyncio
    async def test_embed_does_not_count_view(self, service, db_session):
        share = await create_text(service)
        await service.peek_embed(share.id, now=NOW)
        assert (await db_session.get(Share, share.id, populate_existing=True)).views == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [{"password": "pw"}, {"burn_after_read": True}])
    async def test_embed_refuses(self, service, fields):
        share = await create_text(service, **fields)
        with pytest.raises(Forbidden):
            await service.peek_embed(share.id, now=NOW)


class TestDelete:
    @pytest.mark.asyncio
    async def test_owner_can_delete(self, service, db_session):
        share = await create_text(service, user_id="alice")
        await service.delete_share(share.id, "alice")
        assert await db_session.get(Share, share.id, populate_existing=True) is None

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, service, db_session):
        share = await create_text(service, user_id="alice")
        with pytest.raises(Forbidden):
            await service.delete_share(share.id, "bob")
        assert await db_session.get(Share, share.id, populate_existing=True) is not None

    @pytest.mark.asyncio
    async def test_anonymous_share_cannot_be_deleted(self, service):
        share = await create_text(service, user_id=None)
        with pytest.raises(Forbidden):
            await service.delete_share(share.id, "alice")

    @pytest.mark.asyncio
    async def test_missing_share(self, service):
        with pytest.raises(NotFound):
            await service.delete_share("deadbeef", "alice")

    @pytest.mark.asyncio
    async def test_delete_file_share_removes_blob(self, service, storage):
        share = await service.create_file_share(b"GIF89a", "cat.gif", "image/gif", user_id="alice", now=NOW)
        await service.delete_share(share.id, "alice")

        from app.utils.background import drain

        await drain()
        assert share.file_path in storage.deleted


class TestList:
    @pytest.mark.asyncio
    async def test_newest_first_and_own_only(self, service):
        first = await create_text(service, user_id="alice", now=NOW)
        second = await create_text(service, user_id="alice", now=NOW + timedelta(minutes=1))
        await create_text(service, user_id="bob", now=NOW)

        shares = await service.list_shares("alice")
        assert [s.id for s in shares] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_capped_at_page_size(self, service, settings, monkeypatch):
        monkeypatch.setattr(settings, "list_page_size", 3)
        for minute in range(5):
            await create_text(service, user_id="alice", now=NOW + timedelta(minutes=minute))

        assert len(await service.list_shares("alice")) == 3

    @pytest.mark.asyncio
    async def test_expired_shares_not_listed(self, service):
        expired = await create_text(service, user_id="alice", expiration="1h", now=NOW)
        live = await create_text(service, user_id="alice", expiration="1w", now=NOW)

        shares = await service.list_shares("alice", now=NOW + timedelta(hours=2))
        assert [s.id for s in shares] == [live.id]
        assert expired.id not in [s.id for s in shares]


class TestPurgeExpired:
    @pytest.mark.asyncio
    async def test_purge(self, service, storage, db_session):
        expired = await create_text(service, expiration="1h")
        live = await create_text(service, expiration="1w")
        blob = await service.create_file_share(
            b"GIF89a", "cat.gif", "image/gif", user_id=None, expiration="1h", now=NOW,
        )

        deleted = await service.purge_expired(now=NOW + timedelta(days=1))
        assert deleted == 2
        assert blob.file_path in storage.deleted

        remaining = (await db_session.execute(select(Share.id))).scalars().all()
        assert remaining == [live.id]
        assert expired.id not in remaining

        assert await service.purge_expired(now=NOW + timedelta(days=1)) == 0
