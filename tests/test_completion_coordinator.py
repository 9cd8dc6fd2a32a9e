"""Tests for submission handling and post-submission refresh."""
import asyncio

import pytest

from conftest import FakeFormService, RU_SURVEY, UZ_SURVEY
from rewards_backend.services.availability_resolver import AvailabilityResolver
from rewards_backend.services.completion_coordinator import (
    ALREADY_COMPLETED,
    SUBMITTED,
    CompletionCoordinator,
    cancel_pending_refreshes,
    pending_refreshes,
)
from rewards_backend.services.completion_store import CompletionStore
from rewards_backend.services.form_errors import (
    AlreadyRespondedError,
    FormServiceServerError,
    FormServiceUnavailableError,
)
from rewards_backend.utils.cache import AvailabilityCache
from rewards_backend.utils.inflight import InFlightResolutions

REGISTRATION_GROUP = {"registration": {"name": "Registration", "surveys": ["ru_reg", "uz_reg"]}}


@pytest.fixture
def wiring(db_session, session_factory, make_settings, form_service):
    """Coordinator and resolver sharing one cache, one in-flight tracker and one fake service."""

    def _wire(forms=None, **overrides):
        forms = forms or form_service
        settings = make_settings(**{"survey_groups": REGISTRATION_GROUP, **overrides})
        cache = AvailabilityCache(default_ttl=60)
        inflight = InFlightResolutions()

        def resolver_factory(db):
            return AvailabilityResolver(
                db, client=forms, settings=settings, cache=cache, inflight=inflight, session_factory=session_factory
            )

        coordinator = CompletionCoordinator(
            db_session,
            client=forms,
            settings=settings,
            cache=cache,
            inflight=inflight,
            session_factory=session_factory,
            resolver_factory=resolver_factory,
        )
        return coordinator, resolver_factory(db_session), cache

    return _wire


@pytest.mark.asyncio
async def test_cross_language_dedup(wiring, db_session, user_id):
    coordinator, resolver, _ = wiring()

    group_id = await coordinator.on_submitted(user_id, "ru_reg", language="ru")
    await coordinator.refresh_task

    assert group_id == "registration"
    store = CompletionStore(db_session)
    assert await store.is_completed(user_id, "ru_reg")
    assert await store.is_completed(user_id, "uz_reg")
    assert await resolver.resolve(user_id, "uz") == []


@pytest.mark.asyncio
async def test_ungrouped_survey_marks_only_itself(wiring, db_session, user_id):
    forms = FakeFormService(catalog=[RU_SURVEY, UZ_SURVEY, {"id": "solo", "name": "Одиночный"}])
    coordinator, _, _ = wiring(forms)

    assert await coordinator.on_submitted(user_id, "solo") is None
    await coordinator.refresh_task

    assert await CompletionStore(db_session).list_completed(user_id) == ["solo"]


@pytest.mark.asyncio
async def test_refresh_replaces_stale_cache(wiring, form_service, user_id):
    coordinator, resolver, cache = wiring()
    assert [survey.id for survey in await resolver.resolve(user_id, "ru")] == ["ru_reg"]

    await coordinator.on_submitted(user_id, "ru_reg", language="ru")
    assert cache.get(user_id, "ru") is None

    await coordinator.refresh_task
    assert cache.get(user_id, "ru") == []
    assert form_service.list_calls == 2


@pytest.mark.asyncio
async def test_refresh_waits_for_delay(wiring, form_service, user_id):
    coordinator, _, _ = wiring(refresh_delay_seconds=0.1)

    await coordinator.on_submitted(user_id, "ru_reg", language="ru")
    await asyncio.sleep(0.02)
    assert form_service.list_calls == 0
    assert not coordinator.refresh_task.done()

    await coordinator.refresh_task
    assert form_service.list_calls == 1


@pytest.mark.asyncio
async def test_refresh_is_tracked_beyond_the_coordinator(wiring, user_id):
    coordinator, _, _ = wiring()

    await coordinator.on_submitted(user_id, "ru_reg", language="ru")
    task = coordinator.refresh_task
    del coordinator

    assert task in pending_refreshes
    await task
    await asyncio.sleep(0)
    assert task not in pending_refreshes


@pytest.mark.asyncio
async def test_pending_refreshes_are_cancelled_on_shutdown(wiring, form_service, user_id):
    coordinator, _, _ = wiring(refresh_delay_seconds=5.0)

    await coordinator.on_submitted(user_id, "ru_reg", language="ru")
    task = coordinator.refresh_task

    assert cancel_pending_refreshes() == 1
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)

    assert task not in pending_refreshes
    assert form_service.list_calls == 0


@pytest.mark.asyncio
async def test_refresh_survives_catalog_failure(wiring, form_service, user_id):
    form_service.catalog_error = FormServiceUnavailableError("refused")
    coordinator, _, _ = wiring()

    await coordinator.on_submitted(user_id, "ru_reg")
    await coordinator.refresh_task

    assert coordinator.refresh_task.exception() is None


@pytest.mark.asyncio
async def test_missing_identity_is_ignored(wiring, db_session):
    coordinator, _, _ = wiring()

    assert await coordinator.on_submitted(None, "ru_reg") is None
    assert coordinator.refresh_task is None


@pytest.mark.asyncio
async def test_submit_success(wiring, form_service, db_session, user_id):
    coordinator, _, _ = wiring()

    result = await coordinator.submit(user_id, "uz_reg", {"q1": "ha"}, language="uz")
    await coordinator.refresh_task

    assert result == {"status": SUBMITTED, "survey_id": "uz_reg", "group_id": "registration"}
    assert form_service.submitted == [("uz_reg", {"q1": "ha"}, user_id)]
    assert await CompletionStore(db_session).is_completed(user_id, "ru_reg")


@pytest.mark.asyncio
async def test_submit_already_responded_converges(wiring, form_service, db_session, user_id):
    form_service.submit_error = AlreadyRespondedError("User already responded", status=400)
    coordinator, _, _ = wiring()

    result = await coordinator.submit(user_id, "ru_reg", {})
    await coordinator.refresh_task

    assert result["status"] == ALREADY_COMPLETED
    assert await CompletionStore(db_session).is_completed(user_id, "ru_reg")


@pytest.mark.asyncio
async def test_submit_failure_is_surfaced(wiring, form_service, db_session, user_id):
    form_service.submit_error = FormServiceServerError("boom", status=500)
    coordinator, _, _ = wiring()

    with pytest.raises(FormServiceServerError):
        await coordinator.submit(user_id, "ru_reg", {})

    assert not await CompletionStore(db_session).is_completed(user_id, "ru_reg")
    assert coordinator.refresh_task is None
