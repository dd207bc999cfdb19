"""Tests for handlers/verify_handler.py — binding a sender to an account."""

import pytest

from wafilebot.handlers.verify_handler import (
    VERIFY_INVALID_TEXT,
    VERIFY_OK_TEXT,
    handle_verify,
)

STRANGER = "94770000002@c.us"


def _replies(session) -> list[str]:
    return [c.args[1] for c in session.reply.await_args_list]


class TestVerify:
    @pytest.mark.asyncio
    async def test_valid_code_binds_sender(self, app, session, db, make_message):
        user = await db.create_user("Grace", "grace@example.com")
        msg = make_message(f"#verify {user.unique_code}", sender=STRANGER)

        await handle_verify(app, msg, user.unique_code)

        assert _replies(session) == [VERIFY_OK_TEXT]
        bound = await db.find_verified_user(STRANGER)
        assert bound is not None and bound.id == user.id
        cached = app.user_view.users[STRANGER]
        assert cached.is_verified is True
        assert cached.whatsapp_number == STRANGER

    @pytest.mark.asyncio
    async def test_unknown_code(self, app, session, db, make_message):
        await handle_verify(app, make_message(sender=STRANGER), "nope42")
        assert _replies(session) == [VERIFY_INVALID_TEXT]
        assert await db.find_verified_user(STRANGER) is None

    @pytest.mark.asyncio
    async def test_missing_code(self, app, session, make_message):
        await handle_verify(app, make_message(sender=STRANGER), "   ")
        assert _replies(session) == [VERIFY_INVALID_TEXT]

    @pytest.mark.asyncio
    async def test_reverify_rebinds(self, app, session, db, make_message):
        user = await db.create_user("Grace", "grace@example.com")
        await handle_verify(app, make_message(sender=STRANGER), user.unique_code)
        await handle_verify(app, make_message(sender=STRANGER), user.unique_code)
        assert _replies(session) == [VERIFY_OK_TEXT, VERIFY_OK_TEXT]
        assert (await db.find_verified_user(STRANGER)).id == user.id

    @pytest.mark.asyncio
    async def test_number_moves_to_new_account(self, app, db, make_message):
        first = await db.create_user("Old", "old@example.com")
        second = await db.create_user("New", "new@example.com")
        await handle_verify(app, make_message(sender=STRANGER), first.unique_code)
        await handle_verify(app, make_message(sender=STRANGER), second.unique_code)
        assert (await db.find_verified_user(STRANGER)).id == second.id
