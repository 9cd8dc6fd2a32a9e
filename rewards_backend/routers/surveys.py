"""Router for survey availability and submissions."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from rewards_backend.config import get_settings
from rewards_backend.dependencies import (
    get_availability_resolver,
    get_completion_coordinator,
    get_completion_store,
    get_current_user_id,
)
from rewards_backend.schemas.survey import (
    AvailableSurveysResponse,
    CompletedSurveysResponse,
    SurveySubmission,
    SurveySubmissionResponse,
)
from rewards_backend.services.availability_resolver import AvailabilityResolver, CatalogUnavailableError
from rewards_backend.services.completion_coordinator import CompletionCoordinator
from rewards_backend.services.completion_store import CompletionStore
from rewards_backend.services.form_errors import FormServiceError, IdentityError
from rewards_backend.utils.inflight import ResolutionCancelledError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/surveys", tags=["surveys"])


def _validated_language(language: str | None) -> str:
    settings = get_settings()
    if not language:
        return settings.default_language
    if not settings.is_supported_language(language):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported language '{language}'. Use one of {settings.supported_languages}",
        )
    return language.strip().lower()


@router.get("/available", response_model=AvailableSurveysResponse)
async def get_available_surveys(
    language: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
):
    """List the surveys the caller can still take, in catalog order."""
    language = _validated_language(language)

    try:
        surveys = await resolver.resolve(user_id, language)
    except CatalogUnavailableError as e:
        # Empty list plus 503 so clients retry instead of treating it as "nothing left"
        body = AvailableSurveysResponse(language=language, surveys=[], detail=str(e))
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))
    except ResolutionCancelledError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="superseded_by_newer_request")

    return AvailableSurveysResponse(language=language, surveys=surveys)


@router.get("/completed", response_model=CompletedSurveysResponse)
async def get_completed_surveys(
    user_id: str = Depends(get_current_user_id),
    store: CompletionStore = Depends(get_completion_store),
) -> CompletedSurveysResponse:
    """Return the caller's completed surveys."""
    return CompletedSurveysResponse(**await store.stats(user_id))


@router.post("/{survey_id}/submit", response_model=SurveySubmissionResponse)
async def submit_survey(
    survey_id: str,
    submission: SurveySubmission,
    language: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    coordinator: CompletionCoordinator = Depends(get_completion_coordinator),
) -> SurveySubmissionResponse:
    """Forward answers to the form service and record the completion."""
    language = _validated_language(language)

    try:
        result = await coordinator.submit(user_id, survey_id, submission.answers, language=language)
    except IdentityError as e:
        logger.warning(f"Submission of survey {survey_id} rejected for identity: {e.message}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except FormServiceError as e:
        logger.error(f"Submission of survey {survey_id} failed ({e.kind.value}): {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    return SurveySubmissionResponse(**result)
