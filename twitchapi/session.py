"""
Session
Objet vivant d'un rôle authentifié: identité, tokens courants, client API.

Toute mise à jour des tokens après l'authentification passe par ici
(refresh explicite ou callback du client twitchAPI) et est écrite
immédiatement dans le CredentialStore.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional

from twitchAPI.twitch import Twitch

from database.credential_store import CredentialStore
from twitchapi.errors import RefreshTransportError
from twitchapi.oauth_client import TwitchOAuthClient
from twitchapi.scopes import to_auth_scopes

LOGGER = logging.getLogger(__name__)

RefreshListener = Callable[["Session"], Any]


class Session:
    """
    Session d'un rôle (streamer / bot), liée à un seul user_id.

    - current_access_token(): token courant, refresh si l'expiration est proche
    - refresh(): refresh forcé (RefreshTransportError si échec)
    - on_refresh(cb): callback appelé après chaque refresh persisté
    - api: client twitchAPI lié (None tant que bind_api_client n'a pas été appelé)
    """

    def __init__(
        self,
        role: str,
        store: CredentialStore,
        oauth_client: TwitchOAuthClient,
        user_id: Optional[str],
        username: Optional[str],
        access_token: str,
        refresh_token: str,
        scopes: Optional[List[str]] = None,
        expires_in: Optional[int] = None,
        obtained_at: Optional[datetime] = None,
        refresh_margin: int = 300,
    ):
        self.role = role
        self.store = store
        self.oauth_client = oauth_client
        self.refresh_margin = refresh_margin
        self.scopes = list(scopes or [])
        self.api: Optional[Twitch] = None

        self._user_id = user_id
        self._username = username
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._expires_at = self._compute_expiry(expires_in, obtained_at)
        self._listeners: List[RefreshListener] = []
        self._lock = asyncio.Lock()
        self._tag = f"[Session][{role.upper()}]"

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def username(self) -> Optional[str]:
        return self._username

    @property
    def access_token(self) -> str:
        return self._access_token

    @property
    def refresh_token(self) -> str:
        return self._refresh_token

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    @staticmethod
    def _compute_expiry(expires_in: Optional[int], obtained_at: Optional[datetime]) -> Optional[datetime]:
        if expires_in is None:
            return None
        start = obtained_at or datetime.now(timezone.utc)
        return start + timedelta(seconds=int(expires_in))

    def is_refresh_due(self) -> bool:
        """True si le token expire dans moins de refresh_margin secondes (expiration inconnue = False)"""
        if self._expires_at is None:
            return False
        return datetime.now(timezone.utc) >= self._expires_at - timedelta(seconds=self.refresh_margin)

    def on_refresh(self, listener: RefreshListener) -> None:
        """Enregistre un callback (sync ou async) appelé avec la Session après chaque refresh"""
        self._listeners.append(listener)

    async def current_access_token(self) -> Optional[str]:
        """
        Token d'accès courant, refreshé si l'expiration est proche.

        Returns:
            Le token, ou None si un refresh nécessaire a échoué
        """
        if self.is_refresh_due():
            LOGGER.info(f"{self._tag} 🔄 Access token near expiry, refreshing")
            try:
                await self.refresh()
            except RefreshTransportError as e:
                LOGGER.error(f"{self._tag} ❌ Token refresh failed: {e}")
                return None
        return self._access_token

    async def refresh(self) -> str:
        """
        Refresh forcé via le grant refresh_token.

        Raises:
            RefreshTransportError: réseau ou refus du provider
        """
        async with self._lock:
            tokens = await self.oauth_client.refresh(self._refresh_token)
            scopes = tokens.scopes or self.scopes
            await self._apply(tokens.access_token, tokens.refresh_token, tokens.expires_in, scopes)

            if self.api is not None:
                await self.api.set_user_authentication(
                    tokens.access_token,
                    to_auth_scopes(scopes),
                    tokens.refresh_token,
                    validate=False,
                )
        await self._notify()
        return self._access_token

    async def _handle_client_refresh(self, token: str, refresh_token: str) -> None:
        """user_auth_refresh_callback du client twitchAPI (refresh déclenché par un 401)"""
        LOGGER.info(f"{self._tag} 🔄 API client refreshed the user token")
        async with self._lock:
            await self._apply(token, refresh_token, None, self.scopes)
        await self._notify()

    async def _apply(self, access_token: str, refresh_token: str, expires_in: Optional[int], scopes: List[str]) -> None:
        obtained_at = datetime.now(timezone.utc)
        await self.store.update_tokens(
            self.role,
            access_token,
            refresh_token,
            expires_in=expires_in,
            scopes=scopes,
            obtained_at=obtained_at,
        )
        self._access_token = access_token
        self._refresh_token = refresh_token
        self.scopes = list(scopes)
        self._expires_at = self._compute_expiry(expires_in, obtained_at)

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(self)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                LOGGER.error(f"{self._tag} ❌ Refresh listener failed: {e}", exc_info=True)

    def bind_api_client(self, api: Twitch) -> None:
        """Lie un client twitchAPI: ses refresh internes repassent par la Session"""
        self.api = api
        api.user_auth_refresh_callback = self._handle_client_refresh

    async def close(self) -> None:
        if self.api is not None:
            await self.api.close()
            self.api = None
        LOGGER.info(f"{self._tag} Session closed")

    def __repr__(self) -> str:
        return f"Session(role={self.role!r}, user_id={self._user_id!r}, username={self._username!r})"


ApiClientFactory = Callable[[Session], Awaitable[Any]]


def twitch_client_factory(client_id: str, client_secret: str) -> ApiClientFactory:
    """
    Factory de client API pour l'authenticator: un client twitchAPI par Session,
    authentifié avec les tokens de la Session, sans token d'app.
    """
    async def create(session: Session) -> Twitch:
        twitch = await Twitch(client_id, client_secret, authenticate_app=False)
        await twitch.set_user_authentication(
            session.access_token,
            to_auth_scopes(session.scopes),
            session.refresh_token,
            validate=False,
        )
        session.bind_api_client(twitch)
        LOGGER.info(f"[Session][{session.role.upper()}] ✅ twitchAPI client ready for {session.username or session.user_id}")
        return twitch

    return create
