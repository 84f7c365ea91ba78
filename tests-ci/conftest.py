"""
Pytest configuration for CI tests
Provides common fixtures and fakes (no real Twitch calls)
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from database.config_store import ConfigStore
from database.credential_store import CredentialRecord, CredentialStore
from twitchapi.oauth_client import OAuthTokens
from twitchapi.oauth_server import AuthResult
from twitchapi.scope_validator import TokenValidation

BOT_SCOPES = ["chat:read", "chat:edit"]


@pytest.fixture
def credentials_path(tmp_path):
    return tmp_path / "config" / "credentials.json"


@pytest.fixture
def config_store(credentials_path):
    return ConfigStore(str(credentials_path))


@pytest.fixture
def store(config_store):
    return CredentialStore(config_store)


@pytest.fixture
def stored_record():
    """Record bot complet, tel qu'après une première authentification"""
    return CredentialRecord(
        access_token="stored_access",
        refresh_token="stored_refresh",
        user_id="123",
        username="mybot",
        scopes=list(BOT_SCOPES),
        expires_in=14400,
        obtained_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        browser_hint="Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0",
    )


@pytest.fixture
def validation_for():
    """Factory: TokenValidation pour un user_id et des scopes"""
    def make(user_id="123", scopes=None, login="mybot", expires_in=14000):
        return TokenValidation(
            user_id=user_id,
            login=login,
            client_id="test_client_id",
            scopes=list(BOT_SCOPES if scopes is None else scopes),
            expires_in=expires_in,
        )
    return make


@pytest.fixture
def fake_validator():
    """TokenValidator mocké: validate() renvoie None par défaut (token invalide)"""
    validator = Mock()
    validator.validate = AsyncMock(return_value=None)
    validator.fetch_current_user = AsyncMock(return_value=("123", "mybot"))
    return validator


@pytest.fixture
def fake_oauth_client():
    """TwitchOAuthClient mocké: refresh() réussit avec un nouveau couple"""
    client = Mock()
    client.refresh = AsyncMock(return_value=OAuthTokens(
        access_token="new_access",
        refresh_token="new_refresh",
        expires_in=14400,
        scopes=list(BOT_SCOPES),
    ))
    client.exchange_code = AsyncMock()
    return client


@pytest.fixture
def flow_result():
    return AuthResult(
        access_token="A1",
        refresh_token="R1",
        expires_in=3600,
        scopes=list(BOT_SCOPES),
        user_id="123",
        username="mybot",
        user_agent="Mozilla/5.0 Chrome/120.0",
    )
