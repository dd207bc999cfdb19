"""Tests for services/db.py — users, media records, queries."""

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from wafilebot.services import ArchiveDB, MediaRecord


@pytest.fixture
def archive(tmp_path: Path):
    db = ArchiveDB(tmp_path / "nested" / "archive.db")
    yield db
    db.close()


class TestSchema:
    def test_connect_creates_file_and_version(self, archive: ArchiveDB):
        conn = archive.connect()
        assert archive.db_path.exists()
        assert conn.execute("PRAGMA user_version").fetchone()[0] == 1
        assert archive.connect() is conn

    def test_close_then_reopen(self, archive: ArchiveDB):
        archive.connect()
        archive.close()
        archive.close()
        assert isinstance(archive.connect(), sqlite3.Connection)


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_user(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        assert user.id > 0
        assert len(user.unique_code) == 6
        assert user.is_verified is False
        found = await archive.find_user_by_code(user.unique_code)
        assert found == user

    @pytest.mark.asyncio
    async def test_duplicate_email(self, archive: ArchiveDB):
        await archive.create_user("Ada", "ada@example.com")
        with pytest.raises(ValueError, match="ada@example.com"):
            await archive.create_user("Other Ada", "ada@example.com")

    @pytest.mark.asyncio
    async def test_unverified_user_not_found_by_number(self, archive: ArchiveDB):
        await archive.create_user("Ada", "ada@example.com")
        assert await archive.find_verified_user("1@c.us") is None

    @pytest.mark.asyncio
    async def test_bind(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        await archive.bind_whatsapp(user.id, "1@c.us")
        found = await archive.find_verified_user("1@c.us")
        assert found is not None
        assert found.id == user.id
        assert found.is_verified is True
        assert found.whatsapp_number == "1@c.us"

    @pytest.mark.asyncio
    async def test_unknown_code(self, archive: ArchiveDB):
        assert await archive.find_user_by_code("ffffff") is None


class TestMedia:
    @pytest.mark.asyncio
    async def test_create_and_read_back(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        record = MediaRecord(
            user_id=user.id,
            category="exam",
            media_url="https://storage/exam_1.pdf",
            type="application/pdf",
            file_size=42,
            keywords=["mathématiques", "final"],
            subject="Algebra",
            event_date="2024-05-12",
            content_type="application/pdf",
            timestamp=datetime(2024, 5, 12, 9, 30),
        )
        row_id = await archive.create_media(record)
        assert record.id == row_id

        (got,) = await archive.query_media(user.id)
        assert got == record

    @pytest.mark.asyncio
    async def test_filters_and_order(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        base = datetime(2024, 5, 12, 12, 0)
        for i, cat in enumerate(["poster", "exam", "poster", "link"]):
            await archive.create_media(
                MediaRecord(
                    user_id=user.id,
                    category=cat,
                    media_url=f"u{i}",
                    type="t",
                    timestamp=base + timedelta(hours=i),
                )
            )

        urls = [r.media_url for r in await archive.query_media(user.id)]
        assert urls == ["u3", "u2", "u1", "u0"]

        posters = await archive.query_media(user.id, category="poster")
        assert [r.media_url for r in posters] == ["u2", "u0"]

        window = await archive.query_media(
            user.id, start=base + timedelta(hours=1), end=base + timedelta(hours=2)
        )
        assert [r.media_url for r in window] == ["u2", "u1"]

        assert len(await archive.query_media(user.id, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_count_by_category(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        for cat in ["poster", "exam", "poster"]:
            await archive.create_media(
                MediaRecord(user_id=user.id, category=cat, media_url="u", type="t")
            )
        assert await archive.count_by_category(user.id) == {"exam": 1, "poster": 2}
        assert await archive.count_by_category(user.id + 1) == {}

    @pytest.mark.asyncio
    async def test_text_search_escapes_underscore(self, archive: ArchiveDB):
        user = await archive.create_user("Ada", "ada@example.com")
        await archive.create_media(
            MediaRecord(user_id=user.id, category="exam", media_url="a", type="t",
                        keywords=["ab"])
        )
        await archive.create_media(
            MediaRecord(user_id=user.id, category="exam", media_url="b", type="t",
                        keywords=["a_b"])
        )
        found = await archive.query_media(user.id, text="a_b")
        assert [r.media_url for r in found] == ["b"]
