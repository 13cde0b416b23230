"""Per-adapter record of which connections are live in this process."""

from __future__ import annotations

from typing import Any


class ConnectionPool:
    def __init__(self) -> None:
        self._active: dict[str, dict[str, Any]] = {}

    def mark_active(self, connection_id: str, **state: Any) -> None:
        self._active[connection_id] = dict(state)

    def mark_inactive(self, connection_id: str) -> None:
        self._active.pop(connection_id, None)

    def is_active(self, connection_id: str) -> bool:
        return connection_id in self._active

    def active_ids(self) -> list[str]:
        return list(self._active)
