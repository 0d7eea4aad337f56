"""Tests for the per-conversation session store."""

import pytest

from authbot.models import DialogState, SessionTokens

from conftest import make_address


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store, address):
        state = await store.load(address)
        state.dialog = DialogState.LOGGED_IN
        state.tokens = SessionTokens(user_name="Ada", access_token="a", refresh_token="r")
        await store.save(state)

        loaded = await store.load(address)
        assert loaded.dialog == DialogState.LOGGED_IN
        assert loaded.tokens.user_name == "Ada"

    @pytest.mark.asyncio
    async def test_loaded_state_is_a_copy(self, store, address):
        state = await store.load(address)
        await store.save(state)
        state.dialog = DialogState.LOGGED_IN
        assert (await store.load(address)).dialog == DialogState.NOT_LOGGED_IN

    @pytest.mark.asyncio
    async def test_same_lock_per_conversation(self, store):
        assert store.lock("a") is store.lock("a")
        assert store.lock("a") is not store.lock("b")

    @pytest.mark.asyncio
    async def test_delete_drops_state_and_lock(self, store):
        address = make_address("conv-gone")
        await store.save(await store.load(address))
        first = store.lock(address.key)

        await store.delete(address.key)

        assert (await store.load(address)).tokens is None
        assert store.lock(address.key) is not first

    @pytest.mark.asyncio
    async def test_held_lock_survives_delete(self, store):
        lock = store.lock("busy")
        async with lock:
            await store.delete("busy")
            assert store.lock("busy") is lock
