"""
Auth errors
===========

Hiérarchie d'exceptions du cycle de vie des tokens.

- SoftAuthError : récupérable, fait avancer la machine à états (jamais remontée)
- AuthFlowError : échec du flow OAuth (authorization code), local au flow
- FatalAuthError : la ré-authentification complète a échoué pour un rôle
"""

from typing import Optional


class AuthError(Exception):
    """Base de toutes les erreurs d'authentification"""


class ConfigurationError(AuthError):
    """client_id / client_secret / redirect_uri manquant"""


# ==================== SOFT ====================

class SoftAuthError(AuthError):
    """Erreur récupérable: déclenche la transition vers l'état suivant"""


class MissingCredentialsError(SoftAuthError):
    """Aucun token / user_id / refresh token stocké pour ce rôle"""


class ValidationError(SoftAuthError):
    """Token invalide, expiré, ou endpoint /validate injoignable"""


class IdentityMismatchError(ValidationError):
    """Le token validé appartient à un autre user_id que celui stocké"""

    def __init__(self, expected: Optional[str], actual: Optional[str]):
        super().__init__(f"token belongs to user_id={actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class ScopeMismatchError(SoftAuthError):
    """Token valide mais scopes != scopes requis"""

    def __init__(self, missing, extra):
        self.missing = sorted(missing)
        self.extra = sorted(extra)
        parts = []
        if self.missing:
            parts.append(f"missing {self.missing}")
        if self.extra:
            parts.append(f"unexpected {self.extra}")
        super().__init__(", ".join(parts) or "scope mismatch")


class RefreshTransportError(SoftAuthError):
    """Échec réseau ou refus du provider pendant le refresh_token grant"""


# ==================== FLOW ====================

class AuthFlowError(AuthError):
    """Échec du flow authorization code"""


class MissingCodeError(AuthFlowError):
    """Callback reçu sans paramètre ?code="""


class InvalidStateError(AuthFlowError):
    """Paramètre ?state= absent ou différent de celui émis"""


class TokenExchangeError(AuthFlowError):
    """Échange code -> tokens refusé (non-2xx ou access_token absent)"""


class ListenerBindError(AuthFlowError):
    """Port du serveur OAuth déjà utilisé par un autre processus"""

    def __init__(self, port: int, auth_url: str):
        super().__init__(f"port {port} already in use, authorize manually: {auth_url}")
        self.port = port
        self.auth_url = auth_url


class AuthFlowTimeoutError(AuthFlowError, TimeoutError):
    """Aucun callback reçu dans le délai imparti"""


class FlowSupersededError(AuthFlowError):
    """Un nouveau flow a pris le port de celui-ci"""


# ==================== FATAL ====================

class FatalAuthError(AuthError):
    """La ré-authentification complète a échoué: aucune Session pour ce rôle"""

    def __init__(self, role: str, reason: str):
        super().__init__(f"[{role.upper()}] authentication failed: {reason}")
        self.role = role
        self.reason = reason
