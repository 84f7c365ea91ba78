#!/usr/bin/env python3
"""
AlertBridge - Authentification des comptes Twitch (streamer + bot)

Au démarrage, chaque rôle passe par check -> refresh -> ré-authentification
et obtient une Session (tokens auto-refresh + client twitchAPI).

Usage:
    python main.py                      # authentifie streamer puis bot
    python main.py --role bot           # un seul rôle
    python main.py --check              # rapport des tokens stockés, sans rien modifier
    python main.py --clear bot          # efface les credentials du bot

Codes de sortie: 0 = tous les rôles OK, 1 = erreur / aucun rôle, 2 = mode dégradé
"""

import argparse
import asyncio
import logging
import pathlib
import sys
from typing import Dict, List

from core.config import DEFAULT_CONFIG_PATH, AppConfig, load_config, parse_config
from database.config_store import ConfigStore
from database.credential_store import CredentialStore
from database.crypto import TokenEncryptor
from twitchapi.auth_manager import AccountAuthenticator, clear_credentials
from twitchapi.errors import ConfigurationError, FatalAuthError
from twitchapi.scope_validator import print_scope_report
from twitchapi.scopes import ROLES
from twitchapi.session import Session, twitch_client_factory

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DEGRADED = 2


def parse_args(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(description="AlertBridge - Twitch account authentication")
    parser.add_argument(
        '--config',
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})'
    )
    parser.add_argument(
        '--role',
        choices=[*ROLES, 'all'],
        default='all',
        help='Role to authenticate (default: all)'
    )
    parser.add_argument(
        '--clear',
        choices=[*ROLES, 'all'],
        metavar='ROLE',
        help='Clear stored credentials for ROLE (streamer, bot or all) and exit'
    )
    parser.add_argument(
        '--check',
        action='store_true',
        help='Validate stored tokens and report scopes, without re-authenticating'
    )
    return parser.parse_args(argv)


def setup_logging(level: str = "INFO", log_file: str = "logs/alertbridge.log"):
    """Root logger: fichier + console"""
    log_path = pathlib.Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding='utf-8'),
            logging.StreamHandler()
        ],
        force=True  # Override any existing config
    )
    return log_path


def build_store(config: AppConfig) -> CredentialStore:
    encryptor = None
    if config.encrypt_tokens:
        encryptor = TokenEncryptor(config.key_file)
        LOGGER.info(f"🔐 Token encryption enabled (key fingerprint: {encryptor.get_key_fingerprint()})")
    return CredentialStore(ConfigStore(config.credentials_file), encryptor=encryptor)


def build_authenticator(config: AppConfig, role: str, store: CredentialStore) -> AccountAuthenticator:
    role_config = config.role(role)
    return AccountAuthenticator(
        config.client_id,
        config.client_secret,
        role_config.redirect_uri,
        role,
        role_config.required_scopes,
        store,
        port=role_config.port,
        host=config.oauth_server_host,
        scope_policy=config.scope_policy,
        flow_timeout=config.flow_timeout,
        open_browser=config.open_browser,
        refresh_margin=config.refresh_margin,
        api_client_factory=twitch_client_factory(config.client_id, config.client_secret),
    )


def selected_roles(choice: str) -> List[str]:
    return list(ROLES) if choice == 'all' else [choice]


async def run_clear(store: CredentialStore, roles: List[str]) -> int:
    for role in roles:
        await clear_credentials(store, role)
        print(f"🗑️ {role.upper()} credentials cleared")
    return EXIT_OK


async def run_check(config: AppConfig, store: CredentialStore, roles: List[str]) -> int:
    exit_code = EXIT_OK
    for role in roles:
        validation, comparison = await build_authenticator(config, role, store).inspect()
        print_scope_report(role, validation, comparison)
        if validation is None or not comparison.matches(config.scope_policy):
            exit_code = EXIT_DEGRADED
    return exit_code


async def run_authenticate(config: AppConfig, store: CredentialStore, roles: List[str]) -> int:
    """Rôles authentifiés l'un après l'autre (ils partagent le port du serveur OAuth par défaut)"""
    sessions: Dict[str, Session] = {}
    failed: Dict[str, str] = {}

    try:
        for role in roles:
            try:
                sessions[role] = await build_authenticator(config, role, store).authenticate()
            except FatalAuthError as e:
                LOGGER.error(f"❌ {e} - {role} features unavailable")
                failed[role] = e.reason

        print("=" * 70)
        for role in roles:
            if role in sessions:
                session = sessions[role]
                print(f"✅ {role.upper():<9} {session.username or '?'} (ID: {session.user_id or '?'})")
            else:
                print(f"❌ {role.upper():<9} {failed[role]}")
        print("=" * 70)
    finally:
        for session in sessions.values():
            await session.close()

    if not sessions:
        return EXIT_ERROR
    return EXIT_DEGRADED if failed else EXIT_OK


async def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = parse_config(load_config(args.config))
    except ConfigurationError as e:
        setup_logging()
        LOGGER.error(f"❌ {e}")
        return EXIT_ERROR

    setup_logging(config.log_level, config.log_file)
    store = build_store(config)

    try:
        if args.clear:
            return await run_clear(store, selected_roles(args.clear))
        if args.check:
            return await run_check(config, store, selected_roles(args.role))
        return await run_authenticate(config, store, selected_roles(args.role))
    except ConfigurationError as e:
        LOGGER.error(f"❌ {e}")
        return EXIT_ERROR


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nAu revoir !")
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    cli()
