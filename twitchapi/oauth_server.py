#!/usr/bin/env python3
"""
OAuth Callback Server
Serveur HTTP temporaire (aiohttp) pour le flow "authorization code" Twitch.

Idle -> Listening -> AwaitingCallback -> Exchanging -> ResolvingIdentity -> Done

- Un seul serveur par port: un nouveau flow sur le même port ferme l'ancien
- Le serveur est toujours fermé une seule fois, quel que soit le résultat
- Port déjà pris par un autre processus: URL affichée pour copie manuelle + ListenerBindError
"""

import asyncio
import errno
import html
import logging
import secrets
import webbrowser
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional
from urllib.parse import urlencode, urlparse

from aiohttp import web

from twitchapi.errors import (
    AuthFlowError,
    AuthFlowTimeoutError,
    FlowSupersededError,
    InvalidStateError,
    ListenerBindError,
    MissingCodeError,
    TokenExchangeError,
)
from twitchapi.oauth_client import TWITCH_AUTH_URL, TwitchOAuthClient
from twitchapi.scope_validator import TokenValidator

LOGGER = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Résultat d'un flow OAuth réussi (user_id/username absents si Helix a échoué)"""
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]
    scopes: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    username: Optional[str] = None
    user_agent: Optional[str] = None


def browser_from_user_agent(user_agent: Optional[str]) -> Optional[str]:
    """
    Nom de navigateur (module webbrowser) à partir d'un User-Agent.
    None = navigateur par défaut du système.
    """
    if not user_agent:
        return None

    ua = user_agent.lower()
    if "edg/" in ua or "edge" in ua:
        return "microsoft-edge"
    if "firefox" in ua:
        return "firefox"
    if "chrome" in ua and "chromium" not in ua:
        return "chrome"
    if "safari" in ua and "chrome" not in ua:
        return "safari"
    return None


def _open_url(url: str, browser_name: Optional[str]) -> bool:
    if browser_name:
        try:
            return webbrowser.get(browser_name).open(url)
        except webbrowser.Error:
            LOGGER.info(f"Preferred browser '{browser_name}' not available, using default browser")
    return webbrowser.open(url)


def _page(title: str, message: str, ok: bool = True) -> str:
    color = "#9146FF" if ok else "#E74C3C"
    icon = "&#10004;" if ok else "&#10008;"
    return f"""
    <html>
    <head><title>{html.escape(title)}</title></head>
    <body style="font-family: Arial; text-align: center; padding: 50px;">
        <h1 style="color: {color};">{icon} {html.escape(title)}</h1>
        <p>{html.escape(message)}</p>
        <p>You can close this window and return to the terminal.</p>
        <script>setTimeout(() => {{ window.close(); }}, 3000);</script>
    </body>
    </html>
    """


class OAuthCallbackServer:
    """
    Flow authorization code pour un rôle.

    Usage:
        server = OAuthCallbackServer(client_id, client_secret, redirect_uri, scopes, port=8080, role="bot")
        result = await server.run()
    """

    # Serveur actif par port (un seul à la fois)
    _active: ClassVar[Dict[int, "OAuthCallbackServer"]] = {}

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: List[str],
        port: int = 8080,
        role: str = "streamer",
        host: str = "localhost",
        timeout: Optional[float] = 300,
        open_browser: bool = True,
        browser_hint: Optional[str] = None,
        oauth_client: Optional[TwitchOAuthClient] = None,
        validator: Optional[TokenValidator] = None,
        close_timeout: float = 5.0,
    ):
        """
        Args:
            redirect_uri: URI enregistrée dans l'app Twitch (son path = route du callback)
            scopes: scopes demandés
            port: port d'écoute local
            role: "streamer" / "bot" (logs + page du navigateur)
            timeout: attente max du callback en secondes (None/0 = illimité)
            browser_hint: User-Agent du dernier navigateur utilisé pour ce rôle
            close_timeout: attente max de la fermeture d'un serveur précédent sur le même port
        """
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.port = port
        self.role = role
        self.host = host
        self.timeout = timeout
        self.open_browser = open_browser
        self.browser_hint = browser_hint
        self.close_timeout = close_timeout
        self.oauth_client = oauth_client or TwitchOAuthClient(client_id, client_secret)
        self.validator = validator or TokenValidator()

        self.callback_path = urlparse(redirect_uri).path or "/"
        self.state = secrets.token_urlsafe(32)
        self.listening = asyncio.Event()

        self._tag = f"[OAuthServer][{role.upper()}]"
        self._result: Optional[asyncio.Future] = None
        self._runner: Optional[web.AppRunner] = None
        self._teardown_task: Optional[asyncio.Future] = None

    def get_authorization_url(self) -> str:
        """URL d'autorisation Twitch (force_verify: l'utilisateur reconfirme les scopes)"""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "force_verify": "true",
            "state": self.state,
        }
        return f"{TWITCH_AUTH_URL}?{urlencode(params)}"

    async def run(self) -> AuthResult:
        """
        Démarre le serveur, attend le callback, échange le code.

        Raises:
            ListenerBindError, MissingCodeError, InvalidStateError,
            TokenExchangeError, AuthFlowTimeoutError, FlowSupersededError
        """
        await self._close_previous()

        self._result = asyncio.get_running_loop().create_future()
        auth_url = self.get_authorization_url()

        app = web.Application()
        app.router.add_get(self.callback_path, self._handle_callback)
        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        try:
            await web.TCPSite(self._runner, self.host, self.port).start()
        except OSError as e:
            await self._teardown()
            if e.errno == errno.EADDRINUSE:
                LOGGER.error(
                    f"{self._tag} ❌ Port {self.port} already in use! "
                    f"Open the {self.role.upper()} authorization link manually: {auth_url}"
                )
                print(f"\nPort {self.port} is busy. Authorize the {self.role} account manually:\n{auth_url}\n")
                await self._open_browser(auth_url)
                raise ListenerBindError(self.port, auth_url) from e
            raise AuthFlowError(f"cannot start OAuth server on port {self.port}: {e}") from e

        self._active[self.port] = self
        self.listening.set()
        LOGGER.info(f"{self._tag} Temporary OAuth server listening on {self.host}:{self.port}{self.callback_path}")

        try:
            await self._present(auth_url)
            if self.timeout:
                try:
                    return await asyncio.wait_for(self._result, self.timeout)
                except asyncio.TimeoutError as e:
                    raise AuthFlowTimeoutError(
                        f"no OAuth callback received within {self.timeout}s"
                    ) from e
            return await self._result
        finally:
            await self._teardown()

    async def close(self, error: Optional[AuthFlowError] = None) -> None:
        """Fait échouer le flow en attente (FlowSupersededError par défaut) et ferme le serveur"""
        if self._result is not None and not self._result.done():
            self._result.set_exception(error or FlowSupersededError(
                f"OAuth flow on port {self.port} superseded by a newer flow"
            ))
        await self._teardown()

    async def _close_previous(self) -> None:
        previous = self._active.get(self.port)
        if previous is None or previous is self:
            return

        LOGGER.warning(f"{self._tag} ⚠️ Existing OAuth server found on port {self.port}, closing it")
        try:
            await asyncio.wait_for(previous.close(), timeout=self.close_timeout)
            LOGGER.info(f"{self._tag} Previous OAuth server closed")
        except asyncio.TimeoutError:
            LOGGER.warning(f"{self._tag} ⚠️ Previous OAuth server did not close within {self.close_timeout}s")
        self._active.pop(self.port, None)

    async def _teardown(self) -> None:
        if self._teardown_task is None:
            self._teardown_task = asyncio.ensure_future(self._do_teardown())
        await asyncio.shield(self._teardown_task)

    async def _do_teardown(self) -> None:
        if self._active.get(self.port) is self:
            del self._active[self.port]
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()
            LOGGER.info(f"{self._tag} Temporary OAuth server on port {self.port} closed")

    async def _present(self, auth_url: str) -> None:
        print(f"\n{'=' * 60}")
        print(f"Twitch {self.role.upper()} authorization required")
        print(f"{'=' * 60}")
        print(f"\nIf the browser doesn't open, visit:\n{auth_url}\n")
        LOGGER.info(f"{self._tag} 🔐 Authorization URL: {auth_url}")
        await self._open_browser(auth_url)

    async def _open_browser(self, auth_url: str) -> None:
        if not self.open_browser:
            return

        browser_name = browser_from_user_agent(self.browser_hint)
        if browser_name:
            LOGGER.info(f"{self._tag} Trying preferred browser: {browser_name}")
        try:
            opened = await asyncio.to_thread(_open_url, auth_url, browser_name)
        except Exception as e:
            LOGGER.error(f"{self._tag} ❌ Could not open browser automatically: {e}")
            opened = False

        if not opened:
            LOGGER.warning(f"{self._tag} ⚠️ Please open the link manually: {auth_url}")

    async def _send(self, request: web.Request, status: int, body: str) -> web.Response:
        # La réponse part avant que le flow ne soit résolu (et le serveur fermé)
        response = web.Response(status=status, text=body, content_type="text/html")
        await response.prepare(request)
        await response.write_eof()
        return response

    def _fail(self, error: AuthFlowError) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_exception(error)

    async def _handle_callback(self, request: web.Request) -> web.Response:
        user_agent = request.headers.get("User-Agent")
        LOGGER.info(f"{self._tag} Auth callback received (User-Agent: {user_agent or 'n/a'}, IP: {request.remote or 'n/a'})")

        if self._result is None or self._result.done():
            return web.Response(status=410, text="This authorization request is no longer active.")

        query = request.query
        if "error" in query:
            reason = query.get("error_description") or query["error"]
            LOGGER.error(f"{self._tag} ❌ OAuth error: {reason}")
            response = await self._send(request, 400, _page("Authorization failed", reason, ok=False))
            self._fail(MissingCodeError(f"authorization denied: {reason}"))
            return response

        code = query.get("code")
        if not code:
            LOGGER.error(f"{self._tag} ❌ No authorization code in callback")
            response = await self._send(request, 400, _page("Authorization failed", "No authorization code received.", ok=False))
            self._fail(MissingCodeError("no authorization code received"))
            return response

        if query.get("state") != self.state:
            LOGGER.error(f"{self._tag} ❌ Invalid OAuth state")
            response = await self._send(request, 400, _page("Authorization failed", "Invalid state parameter.", ok=False))
            self._fail(InvalidStateError("OAuth state mismatch"))
            return response

        try:
            tokens = await self.oauth_client.exchange_code(code, self.redirect_uri)
        except TokenExchangeError as e:
            LOGGER.error(f"{self._tag} ❌ {e}")
            response = await self._send(request, 500, _page("Authorization failed", f"Could not obtain Twitch tokens for the {self.role}.", ok=False))
            self._fail(e)
            return response

        try:
            identity = await self.validator.fetch_current_user(self.client_id, tokens.access_token)
        except Exception as e:
            LOGGER.error(f"{self._tag} ❌ User lookup error: {e!r}")
            identity = None

        if identity:
            user_id, username = identity
            LOGGER.info(f"{self._tag} ✅ Authenticated: {username} (ID: {user_id})")
        else:
            user_id = username = None
            LOGGER.error(f"{self._tag} ❌ Could not resolve the {self.role} account, continuing without user info")

        result = AuthResult(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            scopes=tokens.scopes,
            user_id=user_id,
            username=username,
            user_agent=user_agent,
        )

        response = await self._send(request, 200, _page(
            f"Twitch {self.role.upper()} authentication successful!",
            f"The {self.role} account '{username or user_id or 'unknown'}' has been authenticated.",
        ))
        if not self._result.done():
            self._result.set_result(result)
        return response
