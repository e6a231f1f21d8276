from __future__ import annotations

from collections.abc import Iterable


class AccessGuard:
    """Static allow-list of sender ids. An empty list lets everyone in."""

    def __init__(self, allowed_ids: Iterable[int] = ()) -> None:
        self._allowed = frozenset(allowed_ids)

    @property
    def open_mode(self) -> bool:
        return not self._allowed

    @property
    def allowed_ids(self) -> frozenset[int]:
        return self._allowed

    def is_allowed(self, sender_id: int) -> bool:
        if not self._allowed:
            return True
        return sender_id in self._allowed
