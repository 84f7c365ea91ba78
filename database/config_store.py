"""
ConfigStore
Stockage clé/valeur plat persistant (JSON) pour les données d'authentification.

Les clés sont préfixées par rôle (STREAMER_*, BOT_*). Chaque write() fusionne
les valeurs puis réécrit le fichier complet de façon atomique (fichier temporaire
+ os.replace) : un lecteur voit l'ancien état ou le nouveau, jamais un mélange.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)


class ConfigStore:
    """Fichier JSON clé/valeur, write-through, last-write-wins"""

    def __init__(self, path: str = "config/credentials.json"):
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None
        self._write_lock = asyncio.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            LOGGER.info(f"📄 {self.path} not found, starting with an empty store")
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.error(f"❌ Failed to read {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            LOGGER.error(f"❌ {self.path} does not contain a JSON object, ignoring it")
            return {}
        return data

    def read(self) -> Dict[str, Any]:
        """Retourne une copie de l'état courant (chargé depuis le disque au premier appel)"""
        if self._data is None:
            self._data = self._load()
        return dict(self._data)

    async def write(self, values: Dict[str, Any]) -> None:
        """
        Fusionne `values` dans le store et persiste.

        L'état en mémoire n'est remplacé qu'une fois le fichier écrit:
        si l'écriture échoue, l'exception remonte et rien n'a changé.
        """
        async with self._write_lock:
            merged = self.read()
            merged.update(values)
            await asyncio.to_thread(self._dump, merged)
            self._data = merged

        LOGGER.debug(f"💾 {self.path} updated ({', '.join(sorted(values))})")

    def _dump(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
