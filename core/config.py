"""
Configuration applicative (config/config.yaml)

    twitch:
      client_id: "..."
      client_secret: "..."
      redirect_uri: "http://localhost:8080/auth/callback"
    auth:
      oauth_server_port: 8080
      flow_timeout: 300
      scope_policy: exact        # ou superset
    storage:
      credentials_file: config/credentials.json
      encrypt_tokens: false
    roles:
      bot:
        required_scopes: [chat:read, chat:edit]
    logging:
      level: INFO

TWITCH_CLIENT_ID / TWITCH_CLIENT_SECRET / TWITCH_REDIRECT_URI remplacent les valeurs du YAML.
"""

import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml

from twitchapi.errors import ConfigurationError
from twitchapi.scopes import DEFAULT_REQUIRED_SCOPES, ROLES, SCOPE_POLICIES, SCOPE_POLICY_EXACT

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"
DEFAULT_REDIRECT_URI = "http://localhost:8080/auth/callback"


@dataclass
class RoleConfig:
    """Paramètres d'authentification d'un rôle"""
    name: str
    required_scopes: List[str]
    port: int
    redirect_uri: Optional[str]


@dataclass
class AppConfig:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = DEFAULT_REDIRECT_URI

    oauth_server_host: str = "localhost"
    oauth_server_port: int = 8080
    flow_timeout: Optional[float] = 300
    scope_policy: str = SCOPE_POLICY_EXACT
    open_browser: bool = True
    refresh_margin: int = 300

    credentials_file: str = "config/credentials.json"
    encrypt_tokens: bool = False
    key_file: str = ".alertbridge.key"

    log_level: str = "INFO"
    log_file: str = "logs/alertbridge.log"

    roles: Dict[str, RoleConfig] = field(default_factory=dict)

    def role(self, name: str) -> RoleConfig:
        if name not in self.roles:
            raise ConfigurationError(f"unknown role '{name}' (expected one of {', '.join(ROLES)})")
        return self.roles[name]


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Charge config.yaml"""
    config_file = pathlib.Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Config file {config_path} not found")
    with open(config_file, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at top level")
    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' section must be a mapping")
    return value


def _int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}") from e


def _timeout(value: Any, name: str) -> Optional[float]:
    """0 ou null = pas de timeout"""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(f"'{name}' must be a non-negative number of seconds, got {value!r}")
    return value or None


def parse_config(raw: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Construit l'AppConfig depuis le dict YAML + variables d'environnement.

    Raises:
        ConfigurationError: valeur invalide (port, scope_policy, section mal formée)
    """
    environ = os.environ if environ is None else environ
    twitch = _section(raw, "twitch")
    auth = _section(raw, "auth")
    storage = _section(raw, "storage")
    roles = _section(raw, "roles")
    log = _section(raw, "logging")

    config = AppConfig(
        client_id=environ.get("TWITCH_CLIENT_ID") or twitch.get("client_id"),
        client_secret=environ.get("TWITCH_CLIENT_SECRET") or twitch.get("client_secret"),
        redirect_uri=environ.get("TWITCH_REDIRECT_URI") or twitch.get("redirect_uri") or DEFAULT_REDIRECT_URI,
        oauth_server_host=auth.get("oauth_server_host", "localhost"),
        oauth_server_port=_int(auth.get("oauth_server_port", 8080), "auth.oauth_server_port"),
        flow_timeout=_timeout(auth.get("flow_timeout", 300), "auth.flow_timeout"),
        scope_policy=auth.get("scope_policy", SCOPE_POLICY_EXACT),
        open_browser=bool(auth.get("open_browser", True)),
        refresh_margin=_int(auth.get("refresh_margin", 300), "auth.refresh_margin"),
        credentials_file=storage.get("credentials_file", "config/credentials.json"),
        encrypt_tokens=bool(storage.get("encrypt_tokens", False)),
        key_file=storage.get("key_file", ".alertbridge.key"),
        log_level=str(log.get("level", "INFO")).upper(),
        log_file=log.get("file", "logs/alertbridge.log"),
    )

    if config.scope_policy not in SCOPE_POLICIES:
        raise ConfigurationError(
            f"auth.scope_policy must be one of {', '.join(SCOPE_POLICIES)}, got {config.scope_policy!r}"
        )

    for name in ROLES:
        role_raw = roles.get(name) or {}
        scopes = role_raw.get("required_scopes")
        if scopes is not None and not isinstance(scopes, list):
            raise ConfigurationError(f"roles.{name}.required_scopes must be a list")
        config.roles[name] = RoleConfig(
            name=name,
            required_scopes=list(scopes) if scopes is not None else list(DEFAULT_REQUIRED_SCOPES[name]),
            port=_int(role_raw.get("port", config.oauth_server_port), f"roles.{name}.port"),
            redirect_uri=role_raw.get("redirect_uri") or config.redirect_uri,
        )

    unknown = set(roles) - set(ROLES)
    if unknown:
        LOGGER.warning(f"⚠️ Ignoring unknown roles in config: {sorted(unknown)}")

    return config
