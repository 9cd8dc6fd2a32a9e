"""Resolve which surveys a user may still take in a given language."""
import asyncio
import copy
import logging
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import Settings, get_settings
from rewards_backend.schemas.survey import CatalogMetadata, ResolvedSurvey, SurveyDescriptor
from rewards_backend.services.completion_store import CompletionStore, normalize_user_id
from rewards_backend.services.display_info import build_display_info
from rewards_backend.services.equivalence_groups import EquivalenceGroupRegistry
from rewards_backend.services.form_errors import FormServiceError
from rewards_backend.services.form_service_client import FormServiceClient, get_form_service_client
from rewards_backend.services.status_probe import RemoteStatusProbe, RemoteVerdict
from rewards_backend.utils import availability_cache, inflight_resolutions
from rewards_backend.utils.cache import AvailabilityCache
from rewards_backend.utils.inflight import InFlightResolutions
from rewards_backend.utils.language_detection import resolve_survey_language

logger = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    """Raised when the survey catalog cannot be fetched."""


def build_descriptor(item: dict, default_language: str) -> Optional[SurveyDescriptor]:
    """Convert a raw catalog item into a descriptor, or None if it is unusable."""
    if not isinstance(item, dict) or not item.get("id"):
        logger.warning(f"Skipping catalog item without id: {item!r}")
        return None

    name = item.get("name") or ""
    try:
        return SurveyDescriptor(
            id=str(item["id"]),
            display_name=name,
            language=resolve_survey_language(item.get("language"), name, default=default_language),
            catalog_metadata=CatalogMetadata(
                status=item.get("status"),
                submission_count=item.get("numberOfSubmissions") or 0,
                is_closed=bool(item.get("isClosed")),
                created_at=item.get("createdAt"),
                updated_at=item.get("updatedAt"),
            ),
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed catalog item {item.get('id')}: {e}")
        return None


class AvailabilityResolver:
    """
    Produce the ordered list of surveys a user can still take.

    Each candidate is checked cheapest first: local completion, then group
    completion, then a remote status probe. A survey hidden by a local check is
    never probed. Probes run concurrently up to ``probe_concurrency`` and the
    result keeps catalog order.
    """

    def __init__(
        self,
        db: AsyncSession,
        client: FormServiceClient | None = None,
        registry: EquivalenceGroupRegistry | None = None,
        probe: RemoteStatusProbe | None = None,
        settings: Settings | None = None,
        cache: AvailabilityCache | None = None,
        inflight: InFlightResolutions | None = None,
        session_factory: Callable[[], Any] | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or get_form_service_client()
        self.store = CompletionStore(db)
        if registry is None:
            registry = EquivalenceGroupRegistry.from_config(self.settings.survey_groups, store=self.store)
        elif registry.store is None:
            registry = registry.with_store(self.store)
        self.registry = registry
        self.probe = probe or RemoteStatusProbe(self.client, self.settings.probe_timeout_seconds)
        self.cache = cache if cache is not None else availability_cache
        self.inflight = inflight if inflight is not None else inflight_resolutions
        self.session_factory = session_factory

    def _open_session(self):
        if self.session_factory is None:
            from rewards_backend.database import AsyncSessionLocal
            return AsyncSessionLocal()
        return self.session_factory()

    def bind(self, db: AsyncSession) -> "AvailabilityResolver":
        """Same configuration, reading and writing completions through ``db``."""
        bound = copy.copy(self)
        bound.store = CompletionStore(db)
        bound.registry = self.registry.with_store(bound.store)
        return bound

    def _normalize_language(self, language: str | None) -> str:
        if not language or not language.strip():
            return self.settings.default_language
        return language.strip().lower()

    async def fetch_catalog(self) -> list[SurveyDescriptor]:
        """Fetch and parse the whole catalog. Raises CatalogUnavailableError."""
        try:
            items = await asyncio.wait_for(
                self.client.list_forms(), timeout=self.settings.catalog_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Catalog fetch timed out after {self.settings.catalog_timeout_seconds}s")
            raise CatalogUnavailableError("Survey catalog timed out") from e
        except FormServiceError as e:
            logger.error(f"Catalog fetch failed ({e.kind.value}): {e.message}")
            raise CatalogUnavailableError(f"Survey catalog unavailable: {e.message}") from e

        descriptors = []
        for item in items:
            descriptor = build_descriptor(item, self.settings.default_language)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors

    def _filter_candidates(self, catalog: Iterable[SurveyDescriptor], language: str) -> list[SurveyDescriptor]:
        candidates = []
        for descriptor in catalog:
            if descriptor.language != language:
                continue
            if self.settings.hide_closed_surveys and descriptor.catalog_metadata.is_closed:
                logger.debug(f"Skipping closed survey {descriptor.id}")
                continue
            candidates.append(descriptor)
        return candidates

    async def _probe_all(self, survey_ids: list[str], user_id) -> list[RemoteVerdict]:
        semaphore = asyncio.Semaphore(self.settings.probe_concurrency)

        async def bounded_probe(survey_id: str) -> RemoteVerdict:
            async with semaphore:
                return await self.probe.probe(survey_id, user_id=user_id)

        # gather keeps argument order regardless of completion order
        return await asyncio.gather(*(bounded_probe(survey_id) for survey_id in survey_ids))

    async def resolve_uncached(self, user_id, language: str | None) -> list[ResolvedSurvey]:
        """Run one full resolution pass without cache or in-flight bookkeeping."""
        language = self._normalize_language(language)
        catalog = await self.fetch_catalog()
        candidates = self._filter_candidates(catalog, language)

        # One storage read per pass; the fan-out below never touches the session
        completed = set(await self.store.list_completed(user_id))

        to_probe: list[SurveyDescriptor] = []
        for descriptor in candidates:
            if descriptor.id in completed:
                logger.debug(f"Survey {descriptor.id} hidden: completed locally")
                continue
            if self.registry.hidden_by_group(descriptor.id, completed):
                logger.debug(f"Survey {descriptor.id} hidden: group {self.registry.group_of(descriptor.id)} completed")
                continue
            to_probe.append(descriptor)

        verdicts = await self._probe_all([descriptor.id for descriptor in to_probe], user_id)

        surviving: list[ResolvedSurvey] = []
        remote_completed: list[str] = []
        for descriptor, verdict in zip(to_probe, verdicts):
            if verdict.hides:
                remote_completed.append(descriptor.id)
                continue
            surviving.append(
                ResolvedSurvey(
                    **descriptor.model_dump(),
                    display_info=build_display_info(descriptor, self.settings),
                )
            )

        if remote_completed and self.settings.cache_remote_completions:
            await self.store.mark_completed_many(user_id, remote_completed)

        logger.info(
            f"Resolved {len(surviving)}/{len(candidates)} '{language}' surveys for user {user_id} "
            f"({len(candidates) - len(to_probe)} hidden locally, {len(remote_completed)} hidden remotely)"
        )
        return surviving

    async def resolve(self, user_id, language: str | None, use_cache: bool = True) -> list[ResolvedSurvey]:
        """
        Resolve available surveys for (user, language).

        Served from the availability cache when warm. Concurrent calls for the
        same pair share one pass; a call for another language supersedes the
        pending one, whose callers get ResolutionCancelledError.
        """
        language = self._normalize_language(language)
        user_key = normalize_user_id(user_id) or ""

        if use_cache and user_key:
            cached = self.cache.get(user_key, language)
            if cached is not None:
                logger.debug(f"Availability cache hit for user {user_key} ({language})")
                return cached

        async def run_pass() -> list[ResolvedSurvey]:
            # Joined callers may outlive the request that started the pass
            async with self._open_session() as pass_db:
                surveys = await self.bind(pass_db).resolve_uncached(user_id, language)
            if user_key:
                self.cache.put(user_key, language, surveys)
            return surveys

        return await self.inflight.run(user_key, language, run_pass)

    def cancel(self, user_id) -> int:
        """Cancel every pending resolution for a user."""
        return self.inflight.cancel(normalize_user_id(user_id) or "")

    async def diagnose(self, user_id, survey_id: str) -> dict:
        """Local, group and remote state of one survey, for support tooling."""
        completed = await self.store.list_completed(user_id)
        group_id = self.registry.group_of(survey_id)
        verdict = await self.probe.probe(survey_id, user_id=user_id)
        return {
            "survey_id": survey_id,
            "is_completed": survey_id in completed,
            "group_id": group_id,
            "hidden_by_group": self.registry.hidden_by_group(survey_id, completed),
            "remote_verdict": verdict.kind.value,
            "remote_cause": verdict.cause.value if verdict.cause else None,
            "remote_detail": verdict.detail or None,
        }
