"""
Durable key/value storage for client state (role choice, user, session).

Values are JSON documents stored in one file under namespaced keys
(``<prefix><key>``). Without a path the storage lives in memory only.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class ClientStorage:
    def __init__(self, prefix: str = "reabel_", path: str | Path | None = None):
        self.prefix = prefix
        self.path = Path(path) if path else None
        self._items: dict[str, Any] = self._read()

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def get(self, name: str, default: Any = None) -> Any:
        return self._items.get(self.key(name), default)

    def set(self, name: str, value: Any) -> None:
        self._items[self.key(name)] = value
        self._write()

    def remove(self, name: str) -> None:
        if self._items.pop(self.key(name), None) is not None:
            self._write()

    def clear(self, names: Iterable[str] | None = None) -> None:
        """Remove the given keys, or every key under this prefix."""
        if names is None:
            doomed = [k for k in self._items if k.startswith(self.prefix)]
        else:
            doomed = [self.key(n) for n in names]
        for key in doomed:
            self._items.pop(key, None)
        self._write()

    def keys(self) -> list[str]:
        return [k[len(self.prefix):] for k in self._items if k.startswith(self.prefix)]

    def _read(self) -> dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable storage file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2, default=str))
