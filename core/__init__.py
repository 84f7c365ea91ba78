"""
Core - Configuration applicative
"""

from core.config import AppConfig, RoleConfig, load_config, parse_config

__all__ = ["AppConfig", "RoleConfig", "load_config", "parse_config"]
