"""
Scopes requis par rôle et règle de comparaison.

La liste déclarée d'un rôle est le contrat du reste de l'application: en
politique "exact", un token avec des scopes en plus est aussi rejeté qu'un
token avec des scopes en moins.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from twitchAPI.type import AuthScope

LOGGER = logging.getLogger(__name__)

ROLE_STREAMER = "streamer"
ROLE_BOT = "bot"
ROLES = (ROLE_STREAMER, ROLE_BOT)

SCOPE_POLICY_EXACT = "exact"
SCOPE_POLICY_SUPERSET = "superset"
SCOPE_POLICIES = (SCOPE_POLICY_EXACT, SCOPE_POLICY_SUPERSET)

REQUIRED_STREAMER_SCOPES = [
    "bits:read",
    "channel:manage:broadcast",
    "channel:manage:polls",
    "channel:manage:predictions",
    "channel:manage:raids",
    "channel:manage:redemptions",
    "channel:read:goals",
    "channel:read:hype_train",
    "channel:read:polls",
    "channel:read:predictions",
    "channel:read:redemptions",
    "channel:read:subscriptions",
    "channel:read:vips",
    "chat:edit",
    "chat:read",
    "moderation:read",
    "moderator:manage:shoutouts",
    "moderator:read:chatters",
    "moderator:read:followers",
    "user:read:broadcast",
    "user:read:email",
    "user:read:follows",
    "whispers:edit",
    "whispers:read",
]

REQUIRED_BOT_SCOPES = [
    "bits:read",
    "chat:read",
    "chat:edit",
    "channel:moderate",
    "channel:read:redemptions",
    "channel:read:subscriptions",
    "channel:read:vips",
    "channel:read:goals",
    "channel:read:polls",
    "channel:read:predictions",
    "channel:manage:broadcast",
    "channel:manage:polls",
    "channel:manage:predictions",
    "channel:manage:redemptions",
    "channel:manage:raids",
    "moderation:read",
    "moderator:manage:announcements",
    "moderator:manage:automod",
    "moderator:manage:banned_users",
    "moderator:manage:chat_messages",
    "moderator:manage:shoutouts",
    "user:read:broadcast",
    "user:read:email",
    "whispers:read",
    "whispers:edit",
]

DEFAULT_REQUIRED_SCOPES = {
    ROLE_STREAMER: REQUIRED_STREAMER_SCOPES,
    ROLE_BOT: REQUIRED_BOT_SCOPES,
}


@dataclass
class ScopeComparison:
    """Résultat de la comparaison scopes accordés / scopes requis"""
    required: Set[str]
    granted: Set[str]
    missing: Set[str] = field(init=False)
    extra: Set[str] = field(init=False)

    def __post_init__(self):
        self.missing = self.required - self.granted
        self.extra = self.granted - self.required

    def matches(self, policy: str = SCOPE_POLICY_EXACT) -> bool:
        if policy == SCOPE_POLICY_SUPERSET:
            return not self.missing
        return not self.missing and not self.extra

    def describe(self) -> str:
        reasons = []
        if self.missing:
            reasons.append(f"missing required scopes {sorted(self.missing)}")
        if self.extra:
            reasons.append(f"unexpected extra scopes {sorted(self.extra)}")
        return ", ".join(reasons) or "scopes match"


def normalize_scopes(scopes) -> List[str]:
    """
    Twitch renvoie les scopes en liste (validate, token) ou parfois en
    chaîne séparée par des espaces. Absent -> liste vide.
    """
    if not scopes:
        return []
    if isinstance(scopes, str):
        return scopes.split()
    return [str(s) for s in scopes]


def compare_scopes(required: Iterable[str], granted: Iterable[str]) -> ScopeComparison:
    return ScopeComparison(required=set(required), granted=set(normalize_scopes(list(granted))))


def to_auth_scopes(scope_strings: Iterable[str]) -> List[AuthScope]:
    """
    Convertit des scopes string ("chat:edit") en AuthScope pour twitchAPI.
    Les scopes inconnus de la version installée de twitchAPI sont ignorés.
    """
    result = []
    for scope_str in scope_strings:
        try:
            result.append(AuthScope(scope_str))
        except ValueError:
            LOGGER.warning(f"⚠️ Unknown scope string: {scope_str}")
    return result
