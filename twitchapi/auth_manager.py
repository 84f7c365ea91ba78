#!/usr/bin/env python3
"""
AuthManager
Authentification d'un rôle Twitch (streamer / bot) -> Session prête à l'emploi.

Machine à états, dans l'ordre strict:

    CHECK_EXISTING  token stocké valide, même user_id, scopes conformes -> SUCCESS
          |
    REFRESH         refresh_token grant + re-validation -> SUCCESS
          |
    FULL_REAUTH     effacement du rôle + flow OAuth navigateur -> SUCCESS / FatalAuthError

Les erreurs "soft" (SoftAuthError) font passer à l'état suivant et ne sortent
jamais d'authenticate(). Seul l'échec de FULL_REAUTH est fatal.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple

from database.credential_store import CredentialRecord, CredentialStore
from twitchapi.errors import (
    AuthFlowError,
    ConfigurationError,
    FatalAuthError,
    IdentityMismatchError,
    MissingCredentialsError,
    ScopeMismatchError,
    SoftAuthError,
    ValidationError,
)
from twitchapi.oauth_client import TwitchOAuthClient
from twitchapi.oauth_server import AuthResult, OAuthCallbackServer
from twitchapi.scope_validator import TokenValidation, TokenValidator
from twitchapi.scopes import SCOPE_POLICY_EXACT, ScopeComparison, compare_scopes
from twitchapi.session import ApiClientFactory, Session

LOGGER = logging.getLogger(__name__)

FlowFactory = Callable[..., Any]


class AuthState(Enum):
    CHECK_EXISTING = "check_existing"
    REFRESH = "refresh"
    FULL_REAUTH = "full_reauth"
    SUCCESS = "success"
    FATAL = "fatal"


class AccountAuthenticator:
    """
    Authenticator paramétré par rôle (une instance par rôle).

    Les collaborateurs sont injectables (tests):
        validator: TokenValidator (validate + fetch_current_user)
        oauth_client: TwitchOAuthClient (refresh + exchange_code)
        flow_factory: construit le flow OAuth, appelé avec les kwargs d'OAuthCallbackServer
        api_client_factory: async (session) -> client API lié à la Session
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        role: str,
        required_scopes: Iterable[str],
        store: CredentialStore,
        port: int = 8080,
        host: str = "localhost",
        scope_policy: str = SCOPE_POLICY_EXACT,
        flow_timeout: Optional[float] = 300,
        open_browser: bool = True,
        refresh_margin: int = 300,
        validator: Optional[TokenValidator] = None,
        oauth_client: Optional[TwitchOAuthClient] = None,
        flow_factory: Optional[FlowFactory] = None,
        api_client_factory: Optional[ApiClientFactory] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.role = role
        self.required_scopes = list(required_scopes)
        self.store = store
        self.port = port
        self.host = host
        self.scope_policy = scope_policy
        self.flow_timeout = flow_timeout
        self.open_browser = open_browser
        self.refresh_margin = refresh_margin

        self.validator = validator or TokenValidator()
        self.oauth_client = oauth_client or TwitchOAuthClient(client_id or "", client_secret or "")
        self.flow_factory = flow_factory or OAuthCallbackServer
        self.api_client_factory = api_client_factory

        self._tag = f"[AuthManager][{role.upper()}]"

    # ==================== LOGGING ====================

    def _log(self, state: AuthState, decision: str, reason: str, level: int = logging.INFO) -> None:
        LOGGER.log(
            level,
            f"{self._tag} {state.value} -> {decision}: {reason}",
            extra={
                "auth_role": self.role,
                "auth_state": state.value,
                "auth_decision": decision,
                "auth_reason": reason,
            },
        )

    # ==================== HELPERS ====================

    def _check_configuration(self) -> None:
        missing = [
            name for name, value in (
                ("client_id", self.client_id),
                ("client_secret", self.client_secret),
                ("redirect_uri", self.redirect_uri),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"[{self.role.upper()}] missing Twitch configuration: {', '.join(missing)}")

    def _compare(self, granted: Iterable[str]) -> ScopeComparison:
        return compare_scopes(self.required_scopes, granted)

    def _check_scopes(self, granted: Iterable[str]) -> None:
        comparison = self._compare(granted)
        if not comparison.matches(self.scope_policy):
            raise ScopeMismatchError(comparison.missing, comparison.extra)

    def _check_identity(self, validation: Optional[TokenValidation], expected_user_id: str) -> TokenValidation:
        if validation is None:
            raise ValidationError("access token rejected by Twitch")
        if validation.user_id != expected_user_id:
            raise IdentityMismatchError(expected=expected_user_id, actual=validation.user_id)
        return validation

    def _new_session(self, record: CredentialRecord, **overrides) -> Session:
        values = {
            "user_id": record.user_id,
            "username": record.username,
            "access_token": record.access_token,
            "refresh_token": record.refresh_token,
            "scopes": record.scopes,
            "expires_in": record.expires_in,
            "obtained_at": record.obtained_at,
        }
        values.update(overrides)
        return Session(
            role=self.role,
            store=self.store,
            oauth_client=self.oauth_client,
            refresh_margin=self.refresh_margin,
            **values,
        )

    # ==================== STATES ====================

    async def _check_existing(self, record: CredentialRecord) -> Session:
        if not record.access_token or not record.user_id:
            raise MissingCredentialsError("no stored access token or user id")

        validation = self._check_identity(await self.validator.validate(record.access_token), record.user_id)
        self._check_scopes(validation.scopes)

        if set(validation.scopes) != set(record.scopes):
            await self.store.update_scopes(self.role, validation.scopes)

        return self._new_session(
            record,
            scopes=validation.scopes,
            expires_in=validation.expires_in,
            obtained_at=datetime.now(timezone.utc),
        )

    async def _refresh(self, record: CredentialRecord) -> Session:
        if not record.refresh_token or not record.user_id:
            raise MissingCredentialsError("no stored refresh token or user id")

        session = self._new_session(record)
        # Le nouveau couple est écrit dans le store par la Session avant la re-validation
        access_token = await session.refresh()

        validation = self._check_identity(await self.validator.validate(access_token), record.user_id)
        self._check_scopes(validation.scopes)
        session.scopes = list(validation.scopes)
        return session

    async def _full_reauth(self, record: CredentialRecord) -> Session:
        await self.store.clear(self.role)

        flow = self.flow_factory(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scopes=self.required_scopes,
            port=self.port,
            role=self.role,
            host=self.host,
            timeout=self.flow_timeout,
            open_browser=self.open_browser,
            browser_hint=record.browser_hint,
            oauth_client=self.oauth_client,
            validator=self.validator,
        )

        try:
            result: AuthResult = await flow.run()
        except AuthFlowError as e:
            self._log(AuthState.FULL_REAUTH, AuthState.FATAL.value, str(e), level=logging.ERROR)
            raise FatalAuthError(self.role, str(e)) from e

        if not result.access_token or not result.refresh_token:
            reason = "authorization returned an incomplete token pair"
            self._log(AuthState.FULL_REAUTH, AuthState.FATAL.value, reason, level=logging.ERROR)
            raise FatalAuthError(self.role, reason)

        scopes = result.scopes or list(self.required_scopes)
        comparison = self._compare(scopes)
        if not comparison.matches(self.scope_policy):
            LOGGER.warning(f"{self._tag} ⚠️ Granted scopes differ from required: {comparison.describe()}")

        new_record = CredentialRecord(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            user_id=result.user_id,
            username=result.username,
            scopes=scopes,
            expires_in=result.expires_in,
            obtained_at=datetime.now(timezone.utc),
            browser_hint=result.user_agent or record.browser_hint,
        )
        await self.store.save(self.role, new_record)

        # Sans user_id le prochain démarrage repassera par FULL_REAUTH
        if not result.user_id or not result.username:
            reason = "account identity could not be resolved"
            self._log(AuthState.FULL_REAUTH, AuthState.FATAL.value, reason, level=logging.ERROR)
            raise FatalAuthError(self.role, reason)

        return self._new_session(new_record)

    # ==================== PUBLIC ====================

    async def authenticate(self) -> Session:
        """
        Produit une Session authentifiée pour le rôle.

        Raises:
            ConfigurationError: client_id / client_secret / redirect_uri manquant
            FatalAuthError: la ré-authentification complète a échoué
        """
        self._check_configuration()
        LOGGER.info(f"{self._tag} 🔐 Authenticating {self.role} account")

        record = self.store.load(self.role)
        steps = (
            (AuthState.CHECK_EXISTING, self._check_existing, AuthState.REFRESH),
            (AuthState.REFRESH, self._refresh, AuthState.FULL_REAUTH),
        )

        session = None
        for state, step, next_state in steps:
            try:
                session = await step(record)
                self._log(state, AuthState.SUCCESS.value, "stored credentials accepted")
                break
            except SoftAuthError as e:
                self._log(state, next_state.value, f"{type(e).__name__}: {e}", level=logging.WARNING)

        if session is None:
            session = await self._full_reauth(record)
            self._log(AuthState.FULL_REAUTH, AuthState.SUCCESS.value, "new authorization completed")

        if self.api_client_factory is not None:
            await self.api_client_factory(session)

        LOGGER.info(f"{self._tag} ✅ Authenticated as {session.username or '?'} (ID: {session.user_id or '?'})")
        return session

    async def inspect(self) -> Tuple[Optional[TokenValidation], Optional[ScopeComparison]]:
        """
        Valide le token stocké sans rien modifier (main.py --check).

        Returns:
            (validation, comparaison des scopes), (None, None) si pas de token ou token invalide
        """
        record = self.store.load(self.role)
        if not record.access_token:
            return None, None
        try:
            validation = await self.validator.validate(record.access_token)
        except ValidationError as e:
            LOGGER.error(f"{self._tag} ❌ {e}")
            return None, None
        if validation is None:
            return None, None
        return validation, self._compare(validation.scopes)


async def authenticate(
    client_id: Optional[str],
    client_secret: Optional[str],
    redirect_uri: Optional[str],
    role: str,
    required_scopes: Iterable[str],
    store: CredentialStore,
    port: int = 8080,
    **options,
) -> Session:
    """Point d'entrée: une Session par rôle au démarrage (options: voir AccountAuthenticator)"""
    authenticator = AccountAuthenticator(
        client_id,
        client_secret,
        redirect_uri,
        role,
        required_scopes,
        store,
        port=port,
        **options,
    )
    return await authenticator.authenticate()


async def clear_credentials(store: CredentialStore, role: str) -> None:
    """Reset administratif: tous les champs du rôle effacés en une écriture"""
    await store.clear(role)
    LOGGER.info(f"[AuthManager][{role.upper()}] 🗑️ Credentials cleared")
