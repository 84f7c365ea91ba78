#!/usr/bin/env python3
"""
Twitch OAuth token endpoint
- refresh_token grant (refresh d'un access token)
- authorization_code grant (échange du code reçu par le serveur OAuth)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from twitchapi.errors import RefreshTransportError, TokenExchangeError
from twitchapi.scopes import normalize_scopes

LOGGER = logging.getLogger(__name__)

TWITCH_AUTH_URL = "https://id.twitch.tv/oauth2/authorize"
TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"


@dataclass
class OAuthTokens:
    """Réponse du token endpoint"""
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int] = None
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "OAuthTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            scopes=normalize_scopes(data.get("scope")),
        )


class TwitchOAuthClient:
    """Appels POST vers https://id.twitch.tv/oauth2/token"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = TWITCH_TOKEN_URL,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout

    async def _post(self, data: Dict[str, str]) -> Tuple[int, Dict[str, Any], str]:
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **data,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.token_url, data=payload) as resp:
                text = await resp.text()
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = {}
                return resp.status, body if isinstance(body, dict) else {}, text

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """
        Refresh un access token.

        Raises:
            RefreshTransportError: réseau, refus du provider, réponse incomplète
        """
        LOGGER.info("🔄 Refresh token via Twitch OAuth...")

        try:
            status, result, text = await self._post({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RefreshTransportError(f"refresh request failed: {e}") from e

        if status != 200:
            raise RefreshTransportError(f"Refresh failed: {status} - {text}")
        if not result.get("access_token") or not result.get("refresh_token"):
            raise RefreshTransportError("Refresh response without access_token/refresh_token")

        tokens = OAuthTokens.from_response(result)
        LOGGER.info(f"✅ Token refreshé (expires_in: {tokens.expires_in}s)")
        return tokens

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        """
        Échange un code OAuth contre access_token + refresh_token.

        Raises:
            TokenExchangeError: non-2xx, access_token ou refresh_token absent, erreur réseau
        """
        LOGGER.info("🔄 Échange du code OAuth...")

        try:
            status, result, text = await self._post({
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            })
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenExchangeError(f"token request failed: {e}") from e

        if not 200 <= status < 300 or not result.get("access_token"):
            message = result.get("message") or text or "unknown error"
            raise TokenExchangeError(f"Token exchange failed ({status}): {message}")
        if not result.get("refresh_token"):
            raise TokenExchangeError("Token exchange response without refresh_token")

        tokens = OAuthTokens.from_response(result)
        LOGGER.info(f"✅ Got tokens (expires in {tokens.expires_in}s)")
        return tokens
