"""Diagnostic routes for inspecting and resetting completion state."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from rewards_backend.dependencies import (
    get_availability_resolver,
    get_completion_store,
    get_current_user_id,
    get_group_registry,
    require_diagnostics_enabled,
)
from rewards_backend.schemas.survey import CompletedSurveysResponse, GroupStats, SurveyDiagnostics
from rewards_backend.services.availability_resolver import AvailabilityResolver
from rewards_backend.services.completion_store import CompletionStore
from rewards_backend.services.equivalence_groups import EquivalenceGroupRegistry
from rewards_backend.utils import availability_cache

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/diagnostics",
    tags=["diagnostics"],
    dependencies=[Depends(require_diagnostics_enabled)],
)


@router.get("/surveys/{survey_id}", response_model=SurveyDiagnostics)
async def diagnose_survey(
    survey_id: str,
    user_id: str = Depends(get_current_user_id),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
) -> SurveyDiagnostics:
    """Show local, group and remote state of one survey for the caller."""
    return SurveyDiagnostics(**await resolver.diagnose(user_id, survey_id))


@router.get("/groups", response_model=list[GroupStats])
async def get_group_stats(
    user_id: str = Depends(get_current_user_id),
    registry: EquivalenceGroupRegistry = Depends(get_group_registry),
) -> list[GroupStats]:
    return [GroupStats(**stats) for stats in await registry.group_stats(user_id)]


@router.post("/surveys/{survey_id}/unmark", response_model=CompletedSurveysResponse)
async def unmark_survey(
    survey_id: str,
    user_id: str = Depends(get_current_user_id),
    store: CompletionStore = Depends(get_completion_store),
) -> CompletedSurveysResponse:
    """Make one survey available again for the caller."""
    if not await store.unmark_completed(user_id, survey_id):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage_unavailable")
    availability_cache.invalidate_user_data(user_id)
    logger.info(f"Diagnostics: unmarked survey {survey_id} for user {user_id}")
    return CompletedSurveysResponse(**await store.stats(user_id))


@router.post("/groups/{group_id}/unmark", response_model=CompletedSurveysResponse)
async def unmark_group(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: EquivalenceGroupRegistry = Depends(get_group_registry),
    store: CompletionStore = Depends(get_completion_store),
) -> CompletedSurveysResponse:
    """Make every survey of a group available again for the caller."""
    if not registry.members_of(group_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown_group")
    if not await registry.unmark_group_completed(user_id, group_id):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage_unavailable")
    availability_cache.invalidate_user_data(user_id)
    logger.info(f"Diagnostics: unmarked group {group_id} for user {user_id}")
    return CompletedSurveysResponse(**await store.stats(user_id))


@router.post("/reset", response_model=CompletedSurveysResponse)
async def reset_completions(
    user_id: str = Depends(get_current_user_id),
    store: CompletionStore = Depends(get_completion_store),
) -> CompletedSurveysResponse:
    """Forget every completion for the caller."""
    if not await store.clear_all(user_id):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage_unavailable")
    availability_cache.invalidate_user_data(user_id)
    logger.warning(f"Diagnostics: cleared all completions for user {user_id}")
    return CompletedSurveysResponse(**await store.stats(user_id))
