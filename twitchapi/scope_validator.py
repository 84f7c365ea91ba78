"""
🔐 Token Validator - Validate OAuth tokens against Twitch /oauth2/validate

Answers "is this token currently valid, for whom, with which scopes".
No retries here: the AuthManager decides what to do with an invalid token.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import httpx

from twitchapi.errors import ValidationError
from twitchapi.scopes import ScopeComparison, normalize_scopes

logger = logging.getLogger(__name__)

TWITCH_VALIDATE_URL = "https://id.twitch.tv/oauth2/validate"
TWITCH_USERS_URL = "https://api.twitch.tv/helix/users"


@dataclass
class TokenValidation:
    """Réponse de /oauth2/validate pour un token valide"""
    user_id: Optional[str]
    login: Optional[str] = None
    client_id: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    expires_in: Optional[int] = None


class TokenValidator:
    """Validate OAuth tokens with the Twitch identity provider."""

    def __init__(
        self,
        validate_url: str = TWITCH_VALIDATE_URL,
        users_url: str = TWITCH_USERS_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            validate_url: Twitch validate endpoint
            users_url: Helix users endpoint
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.validate_url = validate_url
        self.users_url = users_url
        self.timeout = timeout
        self.transport = transport

    async def validate(self, access_token: Optional[str]) -> Optional[TokenValidation]:
        """
        Validate an access token.

        Args:
            access_token: OAuth token (with or without 'oauth:' prefix), may be None

        Returns:
            TokenValidation if the provider accepts the token, None otherwise

        Raises:
            ValidationError: network failure or unreadable response
        """
        if not access_token:
            logger.warning("validate: no access token provided")
            return None

        clean_token = access_token.replace('oauth:', '')

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    self.validate_url,
                    headers={"Authorization": f"OAuth {clean_token}"}
                )

                if response.status_code != 200:
                    logger.warning(f"Token validation failed ({response.status_code}): {response.text}")
                    return None

                data = response.json()

        except httpx.HTTPError as e:
            logger.error(f"Erreur réseau validation token: {e}")
            raise ValidationError(f"validate endpoint unreachable: {e}") from e
        except ValueError as e:
            logger.error(f"Réponse /validate illisible: {e}")
            raise ValidationError(f"unreadable validate response: {e}") from e

        user_id = data.get("user_id")
        validation = TokenValidation(
            user_id=str(user_id) if user_id is not None else None,
            login=data.get("login"),
            client_id=data.get("client_id"),
            scopes=normalize_scopes(data.get("scopes")),
            expires_in=data.get("expires_in"),
        )

        logger.info(f"✅ Token validé pour user: {validation.login} (ID: {validation.user_id})")
        logger.debug(f"Scopes présents: {validation.scopes}")
        return validation

    async def fetch_current_user(self, client_id: str, access_token: str) -> Optional[Tuple[str, str]]:
        """
        Resolve the account behind a fresh token via Helix /users.

        Returns:
            (user_id, login) or None if the lookup failed
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    self.users_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Client-Id": client_id
                    }
                )

                if response.status_code != 200:
                    logger.error(f"❌ User info failed: {response.status_code} {response.text}")
                    return None

                users = response.json().get("data", [])

        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"❌ Erreur fetch user info: {e}")
            return None

        if not users:
            logger.error("❌ User info failed: empty data")
            return None

        try:
            return str(users[0]["id"]), users[0]["login"]
        except (KeyError, TypeError, IndexError) as e:
            logger.error(f"❌ User info failed: malformed entry ({e!r})")
            return None


def print_scope_report(role: str, validation: Optional[TokenValidation], comparison: Optional[ScopeComparison]) -> None:
    """
    Print a formatted token/scope report to console (used by main.py --check).
    """
    print("\n" + "=" * 60)
    print(f"🔐 {role.upper()} - TOKEN REPORT")
    print("=" * 60)

    if validation is None:
        print("❌ Stored token is missing, invalid or expired")
        print("=" * 60 + "\n")
        return

    print(f"👤 User: {validation.login} (ID: {validation.user_id})")
    if validation.expires_in is not None:
        expires = int(validation.expires_in)
        print(f"⏳ Expires in: {expires}s ({expires // 3600}h {(expires % 3600) // 60}m)")

    print(f"\n📊 Granted scopes ({len(validation.scopes)}):")
    for scope in sorted(validation.scopes):
        print(f"  ✅ {scope}")

    if comparison is not None:
        if comparison.missing:
            print(f"\n❌ Missing ({len(comparison.missing)}):")
            for scope in sorted(comparison.missing):
                print(f"  - {scope}")
        if comparison.extra:
            print(f"\n⚠️  Not declared ({len(comparison.extra)}):")
            for scope in sorted(comparison.extra):
                print(f"  + {scope}")
        if not comparison.missing and not comparison.extra:
            print("\n🎉 Scopes match the declared set exactly")

    print("=" * 60 + "\n")
