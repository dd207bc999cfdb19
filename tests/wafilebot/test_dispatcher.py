"""Tests for dispatcher.py — dedup, classification, verification gate, isolation."""

from unittest.mock import AsyncMock, patch

import pytest

from wafilebot.dispatcher import (
    GENERIC_ERROR_TEXT,
    InFlightMessageSet,
    MessageCategory,
    MessageDispatcher,
    classify_message,
)
from wafilebot.handlers.help_handler import HELP_TEXT
from wafilebot.handlers.verify_handler import VERIFY_FIRST_TEXT, VERIFY_OK_TEXT
from wafilebot.transport import InboundMessage, LifecycleEvent, MediaPayload

VERIFIED = "94770000001@c.us"
STRANGER = "94770000002@c.us"


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _replies(session) -> list[str]:
    return [c.args[1] for c in session.reply.await_args_list]


class TestInFlightMessageSet:
    def test_duplicate_within_ttl(self):
        clock = FakeClock()
        seen = InFlightMessageSet(ttl=30, clock=clock)
        assert seen.add("m1") is True
        clock.now = 29
        assert seen.add("m1") is False
        assert "m1" in seen

    def test_expires_after_ttl(self):
        clock = FakeClock()
        seen = InFlightMessageSet(ttl=30, clock=clock)
        seen.add("m1")
        clock.now = 30
        assert "m1" not in seen
        assert seen.add("m1") is True

    def test_purge_keeps_memory_bounded(self):
        clock = FakeClock()
        seen = InFlightMessageSet(ttl=30, clock=clock)
        for i in range(100):
            seen.add(f"m{i}")
        clock.now = 31
        seen.add("fresh")
        assert len(seen) == 1


class TestClassifyMessage:
    @pytest.mark.parametrize(
        "body, has_media, expected",
        [
            ("#verify abc123", False, MessageCategory.VERIFY),
            ("#VERIFY abc123", True, MessageCategory.VERIFY),
            ("#help", True, MessageCategory.HELP),
            ("look https://x.example", True, MessageCategory.MEDIA),
            ("", True, MessageCategory.MEDIA),
            ("#files https://x.example", False, MessageCategory.LINKS),
            ("#files today", False, MessageCategory.COMMAND),
            ("#unknown", False, MessageCategory.COMMAND),
            ("hello there", False, MessageCategory.UNRECOGNIZED),
            ("", False, MessageCategory.UNRECOGNIZED),
        ],
    )
    def test_priority(self, body, has_media, expected):
        msg = InboundMessage(id="x", sender=VERIFIED, body=body, has_media=has_media)
        assert classify_message(msg) == expected


class TestDedup:
    @pytest.mark.asyncio
    async def test_duplicate_handled_once(self, app, session, make_message, verified_user):
        clock = FakeClock()
        dispatcher = MessageDispatcher(app, clock=clock)
        msg = make_message("#help", id="dup-1")

        await dispatcher.handle_message(msg)
        await dispatcher.handle_message(make_message("#help", id="dup-1"))
        assert session.reply.await_count == 1

        clock.now = app.config.dedup_ttl + 1
        await dispatcher.handle_message(make_message("#help", id="dup-1"))
        assert session.reply.await_count == 2

    @pytest.mark.asyncio
    async def test_messages_without_identity_not_collapsed(
        self, app, session, make_message, verified_user
    ):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("#help", id=""))
        await dispatcher.handle_message(make_message("#help", id=""))
        assert session.reply.await_count == 2

    @pytest.mark.asyncio
    async def test_group_messages_dropped(self, app, session, make_message):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("#help", is_group=True))
        session.reply.assert_not_awaited()


class TestVerificationGate:
    @pytest.mark.asyncio
    async def test_help_open_to_everyone(self, app, session, make_message):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("#help", sender=STRANGER))
        assert _replies(session) == [HELP_TEXT]

    @pytest.mark.asyncio
    async def test_unverified_never_reaches_archive(self, app, session, make_message):
        app.db.create_media = AsyncMock()
        app.db.query_media = AsyncMock()
        media = MediaPayload(data=b"\x89PNG", mimetype="image/png")
        dispatcher = MessageDispatcher(app)

        messages = [
            make_message("", id="a", sender=STRANGER, has_media=True, media=media),
            make_message("see https://x.example", id="b", sender=STRANGER),
            make_message("#files today", id="c", sender=STRANGER),
            make_message("#search math", id="d", sender=STRANGER),
        ]
        for msg in messages:
            await dispatcher.handle_message(msg)

        assert _replies(session) == [VERIFY_FIRST_TEXT] * 4
        app.db.create_media.assert_not_awaited()
        app.db.query_media.assert_not_awaited()
        app.classifier.classify.assert_not_awaited()
        app.storage.store.assert_not_awaited()
        messages[0].session.download_media.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plain_text_hint_sent_once(self, app, session, make_message):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("hi", id="1", sender=STRANGER))
        await dispatcher.handle_message(make_message("hello?", id="2", sender=STRANGER))
        assert _replies(session) == [VERIFY_FIRST_TEXT]

    @pytest.mark.asyncio
    async def test_verified_plain_text_ignored(
        self, app, session, make_message, verified_user
    ):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("thanks!"))
        session.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verify_then_use(self, app, session, db, make_message):
        user = await db.create_user("Grace", "grace@example.com")
        dispatcher = MessageDispatcher(app)

        await dispatcher.handle_message(
            make_message(f"#verify {user.unique_code}", id="1", sender=STRANGER)
        )
        await dispatcher.handle_message(
            make_message("#categories", id="2", sender=STRANGER)
        )
        assert _replies(session) == [VERIFY_OK_TEXT, "No files found"]


class TestRouting:
    @pytest.mark.asyncio
    async def test_links_saved(self, app, session, db, make_message, verified_user):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(
            make_message("check this out https://a.example/x and https://b.example/y")
        )
        assert _replies(session) == ["2 link(s) saved successfully!"]

        records = await db.query_media(verified_user.id)
        assert sorted(r.media_url for r in records) == [
            "https://a.example/x",
            "https://b.example/y",
        ]
        assert all(r.category == "link" and r.type == "link" for r in records)

    @pytest.mark.asyncio
    async def test_handler_error_gets_generic_reply(
        self, app, session, make_message, verified_user
    ):
        dispatcher = MessageDispatcher(app)
        with patch(
            "wafilebot.dispatcher.handle_command",
            AsyncMock(side_effect=RuntimeError("db exploded")),
        ):
            await dispatcher.handle_message(make_message("#files today"))
        assert _replies(session) == [GENERIC_ERROR_TEXT]

    @pytest.mark.asyncio
    async def test_no_live_session(self, app, make_message, verified_user):
        app.supervisor.current = None
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("#help"))

    @pytest.mark.asyncio
    async def test_replies_use_current_session(
        self, app, session, make_message, verified_user
    ):
        dispatcher = MessageDispatcher(app)
        await dispatcher.handle_message(make_message("#help", id="1"))

        replacement = AsyncMock()
        replacement.reply = AsyncMock(return_value=True)
        app.supervisor.current = replacement
        await dispatcher.handle_message(make_message("#help", id="2"))

        assert session.reply.await_count == 1
        assert replacement.reply.await_count == 1

    def test_attach_subscribes_to_messages(self, app):
        dispatcher = MessageDispatcher(app)
        dispatcher.attach()
        app.supervisor.add_session_listener.assert_called_once_with(
            LifecycleEvent.MESSAGE, dispatcher.handle_message
        )
