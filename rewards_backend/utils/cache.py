"""Per-user cache of resolved survey lists."""
import time
from typing import Any, Dict, Optional, Set, Tuple
import logging

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class AvailabilityCache:
    """
    In-memory TTL cache of the last resolution per (user, language).

    Entries are indexed by user so a completion can drop every language view
    of that user at once without scanning unrelated users.
    """

    def __init__(self, default_ttl: float = 30.0):
        self.default_ttl = default_ttl
        self._entries: Dict[CacheKey, tuple[Any, float]] = {}
        self._by_user: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _drop(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        user_id, language = key
        languages = self._by_user.get(user_id)
        if languages is not None:
            languages.discard(language)
            if not languages:
                del self._by_user[user_id]

    def get(self, user_id: str, language: str) -> Optional[Any]:
        """Return the cached list, or None when missing or expired."""
        key = (user_id, language)
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if time.time() > expires_at:
            self._drop(key)
            return None
        return value

    def put(self, user_id: str, language: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = time.time() + (self.default_ttl if ttl is None else ttl)
        self._entries[(user_id, language)] = (value, expires_at)
        self._by_user.setdefault(user_id, set()).add(language)

    def invalidate_user_data(self, user_id: str) -> int:
        """Forget every language view of one user; returns how many were dropped."""
        languages = self._by_user.pop(user_id, set())
        for language in languages:
            self._entries.pop((user_id, language), None)

        if languages:
            logger.debug(f"Invalidated {len(languages)} cached views for {user_id=}")
        return len(languages)

    def clear(self) -> None:
        self._entries.clear()
        self._by_user.clear()
