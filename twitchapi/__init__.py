"""
twitchapi/
==========

Cycle de vie des tokens OAuth Twitch, par rôle (streamer / bot).

Organisation:
- auth_manager.py : machine à états check -> refresh -> ré-authentification
- scope_validator.py : validation des tokens (/oauth2/validate) + identité (Helix /users)
- oauth_client.py : token endpoint (refresh_token, authorization_code)
- oauth_server.py : serveur local temporaire pour le callback OAuth
- session.py : Session vivante d'un rôle (tokens courants + client twitchAPI)
- scopes.py : scopes requis par rôle, règle de comparaison
- errors.py : hiérarchie d'exceptions
"""

from twitchapi.auth_manager import AccountAuthenticator, AuthState, authenticate, clear_credentials
from twitchapi.session import Session

__all__ = ["AccountAuthenticator", "AuthState", "Session", "authenticate", "clear_credentials"]
