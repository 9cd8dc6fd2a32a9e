"""In-flight tracking for availability resolutions."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)


class ResolutionCancelledError(Exception):
    """Raised to a caller whose resolution was superseded before it finished."""


class InFlightResolutions:
    """
    Deduplicate and supersede concurrent resolutions.

    A second request for the same (user, language) while one is pending waits
    for the pending task instead of starting another probe round. A request for
    the same user in a different language cancels the older one, so a stale
    language can never overwrite a newer result.
    """

    def __init__(self):
        self._pending: Dict[Tuple[str, str], asyncio.Task] = {}

    def is_pending(self, user_key: str, language: str) -> bool:
        task = self._pending.get((user_key, language))
        return task is not None and not task.done()

    def _forget(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            self._pending.pop(key, None)

    @staticmethod
    async def _wait(task: asyncio.Task, key: Tuple[str, str]) -> Any:
        try:
            # Shield so one impatient waiter cannot cancel the work for the others
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise ResolutionCancelledError(f"Resolution for {key} was superseded") from None
            raise

    async def run(self, user_key: str, language: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``factory`` unless an identical resolution is already pending."""
        key = (user_key, language)
        existing = self._pending.get(key)
        if existing is not None and not existing.done():
            logger.debug(f"Joining in-flight resolution for {key}")
            return await self._wait(existing, key)

        self.cancel(user_key, keep_language=language)

        task = asyncio.create_task(factory())
        self._pending[key] = task
        task.add_done_callback(lambda finished, key=key: self._forget(key, finished))
        return await self._wait(task, key)

    def cancel(self, user_key: str, keep_language: str | None = None) -> int:
        """Cancel pending resolutions for a user, optionally sparing one language."""
        cancelled = 0
        for (pending_user, language), task in list(self._pending.items()):
            if pending_user != user_key or language == keep_language:
                continue
            if not task.done():
                task.cancel()
                cancelled += 1
                logger.info(f"Cancelled stale resolution for user {user_key} language {language}")
        return cancelled
