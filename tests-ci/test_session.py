"""
Tests Session (twitchapi/session.py)
Refresh à l'expiration, écriture dans le store, callbacks, client twitchAPI lié
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from twitchapi.errors import RefreshTransportError
from twitchapi.session import Session, twitch_client_factory


def make_session(store, oauth_client, obtained_at=None, expires_in=14400):
    return Session(
        role="bot",
        store=store,
        oauth_client=oauth_client,
        user_id="123",
        username="mybot",
        access_token="old_access",
        refresh_token="old_refresh",
        scopes=["chat:read", "chat:edit"],
        expires_in=expires_in,
        obtained_at=obtained_at or datetime.now(timezone.utc),
        refresh_margin=300,
    )


def long_ago():
    return datetime.now(timezone.utc) - timedelta(hours=5)


@pytest.mark.unit
class TestCurrentAccessToken:
    """Tests de current_access_token()"""

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)

        assert await session.current_access_token() == "old_access"
        fake_oauth_client.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_expiry_never_refreshes(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client, expires_in=None)

        assert not session.is_refresh_due()
        assert await session.current_access_token() == "old_access"

    @pytest.mark.asyncio
    async def test_token_within_margin_is_refreshed(self, store, fake_oauth_client):
        obtained_at = datetime.now(timezone.utc) - timedelta(seconds=14400 - 60)
        session = make_session(store, fake_oauth_client, obtained_at=obtained_at)

        assert await session.current_access_token() == "new_access"
        fake_oauth_client.refresh.assert_awaited_once_with("old_refresh")

    @pytest.mark.asyncio
    async def test_refresh_writes_through_to_store(self, store, stored_record, fake_oauth_client):
        await store.save("bot", stored_record)
        session = make_session(store, fake_oauth_client, obtained_at=long_ago())
        before = datetime.now(timezone.utc)

        await session.current_access_token()

        record = store.load("bot")
        assert (record.access_token, record.refresh_token) == ("new_access", "new_refresh")
        assert record.obtained_at >= before
        assert record.expires_in == 14400
        assert record.user_id == "123"
        assert session.refresh_token == "new_refresh"
        assert not session.is_refresh_due()

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, store, stored_record, fake_oauth_client):
        await store.save("bot", stored_record)
        fake_oauth_client.refresh.side_effect = RefreshTransportError("Refresh failed: 400")
        session = make_session(store, fake_oauth_client, obtained_at=long_ago())

        assert await session.current_access_token() is None
        assert store.load("bot").access_token == "stored_access"

    @pytest.mark.asyncio
    async def test_forced_refresh_raises(self, store, fake_oauth_client):
        fake_oauth_client.refresh.side_effect = RefreshTransportError("network down")
        session = make_session(store, fake_oauth_client)

        with pytest.raises(RefreshTransportError):
            await session.refresh()
        assert session.access_token == "old_access"

    def test_identity_is_read_only(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)

        with pytest.raises(AttributeError):
            session.user_id = "999"
        with pytest.raises(AttributeError):
            session.username = "someone_else"


@pytest.mark.unit
class TestRefreshListeners:
    """Tests de on_refresh()"""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners_called(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        sync_listener = Mock()
        async_listener = AsyncMock()
        session.on_refresh(sync_listener)
        session.on_refresh(async_listener)

        await session.refresh()

        sync_listener.assert_called_once_with(session)
        async_listener.assert_awaited_once_with(session)

    @pytest.mark.asyncio
    async def test_listener_sees_persisted_tokens(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        seen = []
        session.on_refresh(lambda s: seen.append(store.load("bot").access_token))

        await session.refresh()

        assert seen == ["new_access"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_refresh(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        session.on_refresh(Mock(side_effect=RuntimeError("listener bug")))
        second = Mock()
        session.on_refresh(second)

        assert await session.refresh() == "new_access"
        second.assert_called_once()


@pytest.mark.unit
class TestApiClientBinding:
    """Tests du client twitchAPI lié à la Session"""

    @pytest.mark.asyncio
    async def test_client_refresh_callback_writes_through(self, store, stored_record, fake_oauth_client):
        await store.save("bot", stored_record)
        session = make_session(store, fake_oauth_client)
        listener = Mock()
        session.on_refresh(listener)
        api = Mock()
        session.bind_api_client(api)

        await api.user_auth_refresh_callback("client_access", "client_refresh")

        record = store.load("bot")
        assert (record.access_token, record.refresh_token) == ("client_access", "client_refresh")
        assert await session.current_access_token() == "client_access"
        listener.assert_called_once_with(session)

    @pytest.mark.asyncio
    async def test_session_refresh_updates_client(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        api = Mock()
        api.set_user_authentication = AsyncMock()
        session.bind_api_client(api)

        await session.refresh()

        args, kwargs = api.set_user_authentication.call_args
        assert args[0] == "new_access"
        assert args[2] == "new_refresh"
        assert kwargs == {"validate": False}

    @pytest.mark.asyncio
    async def test_close_closes_client(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        api = Mock()
        api.close = AsyncMock()
        session.bind_api_client(api)

        await session.close()

        api.close.assert_awaited_once()
        assert session.api is None

    @pytest.mark.asyncio
    async def test_twitch_client_factory(self, store, fake_oauth_client):
        session = make_session(store, fake_oauth_client)
        twitch = Mock()
        twitch.set_user_authentication = AsyncMock()

        with patch("twitchapi.session.Twitch", AsyncMock(return_value=twitch)) as twitch_cls:
            api = await twitch_client_factory("cid", "secret")(session)

        assert api is twitch
        assert session.api is twitch
        twitch_cls.assert_awaited_once_with("cid", "secret", authenticate_app=False)
        args, kwargs = twitch.set_user_authentication.call_args
        assert args[0] == "old_access"
        assert args[2] == "old_refresh"
        assert kwargs == {"validate": False}
        assert twitch.user_auth_refresh_callback == session._handle_client_refresh
