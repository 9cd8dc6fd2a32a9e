"""React to survey submissions: record, propagate, refresh."""
import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import Settings, get_settings
from rewards_backend.services.availability_resolver import AvailabilityResolver, CatalogUnavailableError
from rewards_backend.services.completion_store import CompletionStore, normalize_user_id
from rewards_backend.services.equivalence_groups import EquivalenceGroupRegistry
from rewards_backend.services.form_errors import AlreadyRespondedError
from rewards_backend.services.form_service_client import FormServiceClient, get_form_service_client
from rewards_backend.utils import availability_cache, inflight_resolutions
from rewards_backend.utils.cache import AvailabilityCache
from rewards_backend.utils.inflight import InFlightResolutions, ResolutionCancelledError

logger = logging.getLogger(__name__)

SUBMITTED = "submitted"
ALREADY_COMPLETED = "already_completed"

# Strong references to scheduled refreshes; the event loop only keeps weak ones
pending_refreshes: set[asyncio.Task] = set()


def _forget_refresh(task: asyncio.Task) -> None:
    pending_refreshes.discard(task)
    # Retrieve the exception so it is never reported as unhandled
    if not task.cancelled():
        task.exception()


def cancel_pending_refreshes() -> int:
    """Cancel refreshes that have not finished yet (application shutdown)."""
    loop = asyncio.get_running_loop()
    pending = [task for task in pending_refreshes if not task.done() and task.get_loop() is loop]
    for task in pending:
        task.cancel()
    return len(pending)


async def refresh_availability_background(
    user_id,
    language: str,
    delay_seconds: float,
    session_factory: Callable[[], Any] | None = None,
    resolver_factory: Callable[..., AvailabilityResolver] = AvailabilityResolver,
) -> None:
    """Re-resolve availability after a short delay to warm the cache."""
    # Give the form service time to record the response before probing again
    await asyncio.sleep(delay_seconds)

    if session_factory is None:
        from rewards_backend.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    async with session_factory() as background_db:
        resolver = resolver_factory(background_db)
        try:
            surveys = await resolver.resolve(user_id, language, use_cache=False)
            logger.info(f"Refreshed availability for user {user_id} ({language}): {len(surveys)} surveys")
        except (CatalogUnavailableError, ResolutionCancelledError) as exc:
            logger.warning(f"Availability refresh for user {user_id} skipped: {exc}")
        except Exception as exc:  # Catch-all to avoid unhandled background task errors
            logger.warning(f"Unexpected error refreshing availability for user {user_id}: {exc}", exc_info=True)


class CompletionCoordinator:
    """Record completions and keep the availability view consistent afterwards."""

    def __init__(
        self,
        db: AsyncSession,
        client: FormServiceClient | None = None,
        registry: EquivalenceGroupRegistry | None = None,
        settings: Settings | None = None,
        cache: AvailabilityCache | None = None,
        inflight: InFlightResolutions | None = None,
        session_factory: Callable[[], Any] | None = None,
        resolver_factory: Callable[..., AvailabilityResolver] | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or get_form_service_client()
        self.store = CompletionStore(db)
        if registry is None:
            registry = EquivalenceGroupRegistry.from_config(self.settings.survey_groups, store=self.store)
        else:
            registry = registry.with_store(self.store)
        self.registry = registry
        self.cache = cache if cache is not None else availability_cache
        self.inflight = inflight if inflight is not None else inflight_resolutions
        self.session_factory = session_factory
        self.resolver_factory = resolver_factory or AvailabilityResolver
        self.refresh_task: Optional[asyncio.Task] = None

    async def on_submitted(self, user_id, survey_id: str, language: str | None = None) -> Optional[str]:
        """
        Handle a finished survey.

        Marks the survey completed, propagates to its equivalence group and
        schedules a delayed re-resolution for ``language``.

        Returns:
            The survey's group id, if it belongs to one
        """
        user_key = normalize_user_id(user_id)
        if user_key is None:
            logger.warning(f"Ignoring completion of survey {survey_id} without user identity")
            return None

        await self.store.mark_completed(user_key, survey_id)

        group_id = self.registry.group_of(survey_id)
        if group_id is not None:
            await self.registry.mark_group_completed(user_key, group_id)

        # Passes started before this write would cache a stale list
        self.inflight.cancel(user_key)
        self.cache.invalidate_user_data(user_key)

        self.refresh_task = self.schedule_refresh(user_key, language or self.settings.default_language)
        logger.info(f"Recorded completion of survey {survey_id} for user {user_key} (group={group_id})")
        return group_id

    def schedule_refresh(self, user_id, language: str) -> asyncio.Task:
        """Start the delayed re-resolution in the background."""
        task = asyncio.create_task(
            refresh_availability_background(
                user_id,
                language,
                self.settings.refresh_delay_seconds,
                session_factory=self.session_factory,
                resolver_factory=self.resolver_factory,
            )
        )
        pending_refreshes.add(task)
        task.add_done_callback(_forget_refresh)
        return task

    async def submit(self, user_id, survey_id: str, answers, language: str | None = None) -> dict:
        """
        Forward answers to the form service and record the completion.

        An "already responded" rejection still records the completion so the
        local view converges with the service. Other form service errors are
        raised unchanged.
        """
        try:
            await self.client.submit_form_response(survey_id, answers, user_id)
            status = SUBMITTED
        except AlreadyRespondedError as e:
            logger.info(f"Survey {survey_id} already answered by user {user_id}: {e.message}")
            status = ALREADY_COMPLETED

        group_id = await self.on_submitted(user_id, survey_id, language)
        return {"status": status, "survey_id": survey_id, "group_id": group_id}
