"""
Stockage durable des credentials OAuth (fichier JSON, tokens chiffrables)
"""

from .config_store import ConfigStore
from .credential_store import CredentialRecord, CredentialStore
from .crypto import TokenEncryptor

__all__ = ['ConfigStore', 'CredentialRecord', 'CredentialStore', 'TokenEncryptor']
