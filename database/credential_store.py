"""
CredentialStore
Vue par rôle (streamer, bot) sur le ConfigStore.

Un CredentialRecord par rôle, stocké sous des clés préfixées:

    STREAMER_OAUTH_TOKEN, STREAMER_OAUTH_REFRESH_TOKEN, STREAMER_TWITCH_USER_ID,
    STREAMER_USERNAME, STREAMER_OAUTH_SCOPES, STREAMER_OAUTH_EXPIRES_IN,
    LAST_STREAMER_TOKEN_REFRESH, STREAMER_LAST_AUTH_BROWSER_USER_AGENT

Invariant: access_token et refresh_token sont présents ensemble ou absents ensemble.
Chaque mutation passe par un seul ConfigStore.write() (atomique).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cryptography.fernet import InvalidToken

from database.config_store import ConfigStore
from database.crypto import TokenEncryptor

LOGGER = logging.getLogger(__name__)


@dataclass
class CredentialRecord:
    """Données d'authentification durables d'un rôle"""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    expires_in: Optional[int] = None
    obtained_at: Optional[datetime] = None
    browser_hint: Optional[str] = None

    @property
    def has_token_pair(self) -> bool:
        return bool(self.access_token) and bool(self.refresh_token)

    @property
    def is_empty(self) -> bool:
        return not any([
            self.access_token, self.refresh_token, self.user_id, self.username,
            self.scopes, self.expires_in, self.obtained_at, self.browser_hint,
        ])

    def check_token_pair(self) -> None:
        """Raise ValueError si un seul des deux tokens est présent"""
        if bool(self.access_token) != bool(self.refresh_token):
            raise ValueError("access_token and refresh_token must be set together")


def _keys(role: str) -> Dict[str, str]:
    prefix = role.upper()
    return {
        "access_token": f"{prefix}_OAUTH_TOKEN",
        "refresh_token": f"{prefix}_OAUTH_REFRESH_TOKEN",
        "user_id": f"{prefix}_TWITCH_USER_ID",
        "username": f"{prefix}_USERNAME",
        "scopes": f"{prefix}_OAUTH_SCOPES",
        "expires_in": f"{prefix}_OAUTH_EXPIRES_IN",
        "obtained_at": f"LAST_{prefix}_TOKEN_REFRESH",
        "browser_hint": f"{prefix}_LAST_AUTH_BROWSER_USER_AGENT",
    }


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        LOGGER.warning(f"⚠️ Ignoring malformed token timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CredentialStore:
    """
    Lecture / écriture des CredentialRecord.

    Si un TokenEncryptor est fourni, les deux tokens sont chiffrés sur disque.
    Un token indéchiffrable (mauvaise clé) rend la paire entière absente.
    """

    def __init__(self, config_store: ConfigStore, encryptor: Optional[TokenEncryptor] = None):
        self.config_store = config_store
        self.encryptor = encryptor

    def _encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or self.encryptor is None:
            return value
        return self.encryptor.encrypt(value)

    def _decrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or self.encryptor is None:
            return value
        return self.encryptor.decrypt(value)

    def load(self, role: str) -> CredentialRecord:
        """Charge le record du rôle (record vide si rien n'est stocké)"""
        data = self.config_store.read()
        keys = _keys(role)

        try:
            access_token = self._decrypt(data.get(keys["access_token"]) or None)
            refresh_token = self._decrypt(data.get(keys["refresh_token"]) or None)
        except InvalidToken:
            LOGGER.error(f"❌ [{role.upper()}] Stored tokens cannot be decrypted with the current key, ignoring them")
            access_token = refresh_token = None

        if bool(access_token) != bool(refresh_token):
            LOGGER.warning(f"⚠️ [{role.upper()}] Incomplete token pair in store, ignoring both tokens")
            access_token = refresh_token = None

        scopes = data.get(keys["scopes"])
        user_id = data.get(keys["user_id"])

        return CredentialRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=str(user_id) if user_id else None,
            username=data.get(keys["username"]) or None,
            scopes=list(scopes) if isinstance(scopes, list) else [],
            expires_in=_parse_int(data.get(keys["expires_in"])),
            obtained_at=_parse_timestamp(data.get(keys["obtained_at"])),
            browser_hint=data.get(keys["browser_hint"]) or None,
        )

    async def save(self, role: str, record: CredentialRecord) -> None:
        """Remplace le record complet du rôle (une seule écriture)"""
        record.check_token_pair()
        keys = _keys(role)

        await self.config_store.write({
            keys["access_token"]: self._encrypt(record.access_token),
            keys["refresh_token"]: self._encrypt(record.refresh_token),
            keys["user_id"]: record.user_id,
            keys["username"]: record.username,
            keys["scopes"]: list(record.scopes),
            keys["expires_in"]: record.expires_in,
            keys["obtained_at"]: record.obtained_at.isoformat() if record.obtained_at else None,
            keys["browser_hint"]: record.browser_hint,
        })
        LOGGER.info(f"💾 [{role.upper()}] Credentials saved (user={record.username or record.user_id})")

    async def update_tokens(
        self,
        role: str,
        access_token: str,
        refresh_token: str,
        expires_in: Optional[int] = None,
        scopes: Optional[List[str]] = None,
        obtained_at: Optional[datetime] = None,
    ) -> None:
        """
        Écrit une nouvelle paire de tokens (refresh).
        user_id / username / browser hint ne sont pas touchés.
        """
        if not access_token or not refresh_token:
            raise ValueError("access_token and refresh_token must be set together")

        keys = _keys(role)
        obtained_at = obtained_at or datetime.now(timezone.utc)
        values = {
            keys["access_token"]: self._encrypt(access_token),
            keys["refresh_token"]: self._encrypt(refresh_token),
            keys["expires_in"]: expires_in,
            keys["obtained_at"]: obtained_at.isoformat(),
        }
        if scopes is not None:
            values[keys["scopes"]] = list(scopes)

        await self.config_store.write(values)
        LOGGER.info(f"💾 [{role.upper()}] Refreshed token pair saved")

    async def update_scopes(self, role: str, scopes: List[str]) -> None:
        await self.config_store.write({_keys(role)["scopes"]: list(scopes)})
        LOGGER.info(f"💾 [{role.upper()}] Stored scopes updated ({len(scopes)})")

    async def clear(self, role: str) -> None:
        """Efface tous les champs du rôle en une seule écriture"""
        LOGGER.info(f"🗑️ [{role.upper()}] Clearing all stored credentials")
        await self.config_store.write({
            key: ([] if field_name == "scopes" else None)
            for field_name, key in _keys(role).items()
        })
