"""
Tests du stockage des credentials (database/)
ConfigStore (fichier JSON atomique) + CredentialStore (vue par rôle) + chiffrement
"""
import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from database.config_store import ConfigStore
from database.credential_store import CredentialRecord, CredentialStore
from database.crypto import ENCRYPTED_PREFIX, TokenEncryptor


@pytest.mark.unit
class TestConfigStore:
    """Tests du store clé/valeur"""

    def test_missing_file_reads_empty(self, config_store):
        assert config_store.read() == {}

    def test_corrupt_file_reads_empty(self, credentials_path):
        credentials_path.parent.mkdir(parents=True)
        credentials_path.write_text("{not json", encoding="utf-8")

        assert ConfigStore(str(credentials_path)).read() == {}

    @pytest.mark.asyncio
    async def test_write_merges_and_persists(self, config_store, credentials_path):
        await config_store.write({"A": 1, "B": "x"})
        await config_store.write({"B": "y"})

        assert config_store.read() == {"A": 1, "B": "y"}
        assert json.loads(credentials_path.read_text(encoding="utf-8")) == {"A": 1, "B": "y"}

    @pytest.mark.asyncio
    async def test_failed_write_leaves_state_unchanged(self, config_store, credentials_path):
        await config_store.write({"A": 1})

        with patch.object(ConfigStore, "_dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await config_store.write({"A": 2, "B": 3})

        assert config_store.read() == {"A": 1}
        assert json.loads(credentials_path.read_text(encoding="utf-8")) == {"A": 1}

    @pytest.mark.asyncio
    async def test_no_temp_file_left_behind(self, config_store, credentials_path):
        await config_store.write({"A": 1})

        assert [p.name for p in credentials_path.parent.iterdir()] == ["credentials.json"]

    def test_read_returns_copy(self, config_store):
        config_store.read()["A"] = 1

        assert config_store.read() == {}


@pytest.mark.unit
class TestCredentialStore:
    """Tests des CredentialRecord par rôle"""

    def test_empty_store_gives_empty_record(self, store):
        record = store.load("bot")

        assert record.is_empty
        assert record.scopes == []

    @pytest.mark.asyncio
    async def test_save_then_load_after_restart(self, store, stored_record, credentials_path):
        await store.save("bot", stored_record)

        reloaded = CredentialStore(ConfigStore(str(credentials_path))).load("bot")

        assert reloaded == stored_record

    @pytest.mark.asyncio
    async def test_keys_are_prefixed_per_role(self, store, stored_record, config_store):
        await store.save("bot", stored_record)

        data = config_store.read()
        assert data["BOT_OAUTH_TOKEN"] == "stored_access"
        assert data["BOT_OAUTH_REFRESH_TOKEN"] == "stored_refresh"
        assert data["BOT_TWITCH_USER_ID"] == "123"
        assert data["BOT_USERNAME"] == "mybot"
        assert data["BOT_OAUTH_SCOPES"] == ["chat:read", "chat:edit"]
        assert data["LAST_BOT_TOKEN_REFRESH"] == "2025-01-01T12:00:00+00:00"
        assert "BOT_LAST_AUTH_BROWSER_USER_AGENT" in data
        assert not any(key.startswith("STREAMER_") for key in data)

    @pytest.mark.asyncio
    async def test_save_rejects_half_token_pair(self, store):
        record = CredentialRecord(access_token="only_access", user_id="123")

        with pytest.raises(ValueError):
            await store.save("bot", record)

        assert store.load("bot").is_empty

    @pytest.mark.asyncio
    async def test_half_pair_on_disk_is_ignored(self, config_store, store):
        await config_store.write({"BOT_OAUTH_TOKEN": "orphan", "BOT_TWITCH_USER_ID": "123"})

        record = store.load("bot")

        assert record.access_token is None
        assert record.refresh_token is None
        assert record.user_id == "123"

    @pytest.mark.asyncio
    async def test_clear_removes_every_field(self, store, stored_record):
        await store.save("bot", stored_record)
        await store.save("streamer", stored_record)

        await store.clear("bot")

        assert store.load("bot").is_empty
        assert store.load("streamer") == stored_record

    @pytest.mark.asyncio
    async def test_clear_is_a_single_write(self, store, stored_record, config_store):
        await store.save("bot", stored_record)

        with patch.object(config_store, "write", wraps=config_store.write) as write:
            await store.clear("bot")

        assert write.call_count == 1

    @pytest.mark.asyncio
    async def test_update_tokens_keeps_identity(self, store, stored_record):
        await store.save("bot", stored_record)
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)

        await store.update_tokens("bot", "A2", "R2", expires_in=3600, obtained_at=now)

        record = store.load("bot")
        assert (record.access_token, record.refresh_token) == ("A2", "R2")
        assert record.expires_in == 3600
        assert record.obtained_at == now
        assert record.user_id == "123"
        assert record.username == "mybot"
        assert record.browser_hint == stored_record.browser_hint

    @pytest.mark.asyncio
    async def test_update_tokens_requires_both(self, store):
        with pytest.raises(ValueError):
            await store.update_tokens("bot", "A2", "")

    @pytest.mark.asyncio
    async def test_update_scopes(self, store, stored_record):
        await store.save("bot", stored_record)

        await store.update_scopes("bot", ["chat:edit", "chat:read"])

        assert set(store.load("bot").scopes) == {"chat:read", "chat:edit"}


@pytest.mark.unit
class TestTokenEncryption:
    """Tests du chiffrement des tokens au repos"""

    @pytest.mark.asyncio
    async def test_tokens_encrypted_on_disk(self, tmp_path, config_store, stored_record):
        encryptor = TokenEncryptor(str(tmp_path / "test.key"))
        store = CredentialStore(config_store, encryptor=encryptor)

        await store.save("bot", stored_record)

        data = config_store.read()
        assert data["BOT_OAUTH_TOKEN"].startswith(ENCRYPTED_PREFIX)
        assert "stored_access" not in data["BOT_OAUTH_TOKEN"]
        assert store.load("bot").access_token == "stored_access"

    @pytest.mark.asyncio
    async def test_wrong_key_drops_token_pair(self, tmp_path, config_store, stored_record):
        await CredentialStore(config_store, TokenEncryptor(str(tmp_path / "a.key"))).save("bot", stored_record)

        record = CredentialStore(config_store, TokenEncryptor(str(tmp_path / "b.key"))).load("bot")

        assert record.access_token is None
        assert record.refresh_token is None
        assert record.user_id == "123"

    def test_plaintext_values_pass_through(self, tmp_path):
        encryptor = TokenEncryptor(str(tmp_path / "test.key"))

        assert encryptor.decrypt("plain_token") == "plain_token"

    def test_key_reused_across_instances(self, tmp_path):
        key_file = str(tmp_path / "test.key")
        token = TokenEncryptor(key_file).encrypt("secret")

        assert TokenEncryptor(key_file).decrypt(token) == "secret"

    def test_key_fingerprint_stable(self, tmp_path):
        key_file = str(tmp_path / "test.key")

        fingerprint = TokenEncryptor(key_file).get_key_fingerprint()

        assert len(fingerprint) == 16
        assert TokenEncryptor(key_file).get_key_fingerprint() == fingerprint
        assert TokenEncryptor(str(tmp_path / "other.key")).get_key_fingerprint() != fingerprint
