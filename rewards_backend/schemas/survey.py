"""Pydantic schemas for survey availability and completion endpoints."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator

from rewards_backend.schemas.base import BaseSchema, OptionalUtcDatetime


class CatalogMetadata(BaseSchema):
    """Catalog fields reported by the form service."""

    status: Optional[str] = None
    submission_count: int = 0
    is_closed: bool = False
    created_at: OptionalUtcDatetime = None
    updated_at: OptionalUtcDatetime = None


class SurveyDescriptor(BaseSchema):
    """A survey as listed in the catalog."""

    id: str
    display_name: str
    language: str
    catalog_metadata: CatalogMetadata = Field(default_factory=CatalogMetadata)


class PrizeInfo(BaseSchema):
    """Reward amounts shown next to a survey."""

    base_prize: int
    additional_prize: int
    lottery_amount: int
    lottery_eligible: bool


class DisplayInfo(BaseSchema):
    """Localized presentation attached by the resolver."""

    title: str
    summary_lines: list[str]
    prize: PrizeInfo


class ResolvedSurvey(SurveyDescriptor):
    """Catalog survey decorated with display information."""

    display_info: DisplayInfo


class AvailableSurveysResponse(BaseSchema):
    """Envelope for the available surveys endpoint."""

    language: str
    surveys: list[ResolvedSurvey]
    detail: Optional[str] = None


class SurveySubmission(BaseSchema):
    """Answers submitted by the web app."""

    answers: dict[str, Any] | list[Any]


class SurveySubmissionResponse(BaseSchema):
    """Response returned after handling survey submission."""

    status: str
    survey_id: str
    group_id: Optional[str] = None


class TallyWebhookPayload(BaseSchema):
    """Subset of the Tally webhook payload needed to record a completion."""

    form_id: str = Field(..., alias="formId", min_length=1)
    respondent_id: Optional[str] = Field(default=None, alias="respondentId")
    response_id: Optional[str] = Field(default=None, alias="responseId")
    form_name: Optional[str] = Field(default=None, alias="formName")

    @field_validator("respondent_id", "response_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value):
        """Telegram ids arrive as numbers from some relays."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# Tally has used both spellings for the submission event
FORM_RESPONSE_EVENTS = frozenset({"FORM_RESPONSE", "formResponse"})


class TallyWebhook(BaseSchema):
    """Envelope posted by the rewards webhook relay."""

    event_id: Optional[str] = Field(default=None, alias="eventId")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    payload: TallyWebhookPayload

    @property
    def is_form_response(self) -> bool:
        return self.event_type in FORM_RESPONSE_EVENTS


class CompletedSurveysResponse(BaseSchema):
    """Completion statistics for the current user."""

    total: int
    surveys: list[str]


class GroupStats(BaseSchema):
    """Per-group completion statistics."""

    group_id: str
    name: str
    total: int
    completed: int
    surveys: list[str]
    completed_surveys: list[str]
    is_completed: bool


class SurveyDiagnostics(BaseSchema):
    """Local, group and remote state of one survey for one user."""

    survey_id: str
    is_completed: bool
    group_id: Optional[str] = None
    hidden_by_group: bool
    remote_verdict: str
    remote_cause: Optional[str] = None
    remote_detail: Optional[str] = None
