"""Router receiving form service webhooks."""
import logging

from fastapi import APIRouter, Depends

from rewards_backend.dependencies import get_completion_coordinator, verify_tally_signature
from rewards_backend.schemas.survey import SurveySubmissionResponse, TallyWebhook
from rewards_backend.services.completion_coordinator import CompletionCoordinator
from rewards_backend.utils.language_detection import detect_language

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/tally",
    response_model=SurveySubmissionResponse,
    dependencies=[Depends(verify_tally_signature)],
)
async def receive_tally_webhook(
    webhook: TallyWebhook,
    coordinator: CompletionCoordinator = Depends(get_completion_coordinator),
) -> SurveySubmissionResponse:
    """Record a completion reported by the form service."""
    payload = webhook.payload

    if not webhook.is_form_response:
        logger.info(f"Webhook {webhook.event_id} of type {webhook.event_type!r} ignored")
        return SurveySubmissionResponse(status="ignored", survey_id=payload.form_id)

    if not payload.respondent_id:
        logger.warning(f"Webhook {webhook.event_id} for form {payload.form_id} has no respondent, ignoring")
        return SurveySubmissionResponse(status="ignored", survey_id=payload.form_id)

    language = detect_language(payload.form_name, default=coordinator.settings.default_language)
    group_id = await coordinator.on_submitted(payload.respondent_id, payload.form_id, language=language)

    logger.info(f"Webhook {webhook.event_id} recorded form {payload.form_id} for respondent {payload.respondent_id}")
    return SurveySubmissionResponse(status="recorded", survey_id=payload.form_id, group_id=group_id)
