"""Remote completion status probe for a single survey."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rewards_backend.config import get_settings
from rewards_backend.services.form_errors import (
    AlreadyRespondedError,
    FormServiceServerError,
    FormServiceUnavailableError,
    IdentityError,
)
from rewards_backend.services.form_service_client import FormServiceClient

logger = logging.getLogger(__name__)


class VerdictKind(str, Enum):
    COMPLETED = "completed"
    AVAILABLE = "available"
    INDETERMINATE = "indeterminate"


class IndeterminateCause(str, Enum):
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class RemoteVerdict:
    """Outcome of one probe. Only ``COMPLETED`` may hide a survey."""
    kind: VerdictKind
    cause: Optional[IndeterminateCause] = None
    detail: str = ""

    @classmethod
    def completed(cls, detail: str = "") -> "RemoteVerdict":
        return cls(VerdictKind.COMPLETED, detail=detail)

    @classmethod
    def available(cls) -> "RemoteVerdict":
        return cls(VerdictKind.AVAILABLE)

    @classmethod
    def indeterminate(cls, cause: IndeterminateCause, detail: str = "") -> "RemoteVerdict":
        return cls(VerdictKind.INDETERMINATE, cause=cause, detail=detail)

    @property
    def hides(self) -> bool:
        return self.kind is VerdictKind.COMPLETED


class RemoteStatusProbe:
    """
    Ask the form service whether a user already responded to a survey.

    Fetching a form on behalf of a respondent fails with an "already responded"
    error once they answered, so the fetch doubles as a status check. The probe
    fails open: anything but that error keeps the survey visible.
    """

    def __init__(self, client: FormServiceClient, timeout_seconds: float | None = None):
        self.client = client
        self.timeout_seconds = timeout_seconds or get_settings().probe_timeout_seconds

    async def probe(self, survey_id: str, user_id=None) -> RemoteVerdict:
        """Classify the remote state of ``survey_id`` for ``user_id``. Never raises."""
        try:
            await asyncio.wait_for(
                self.client.get_form_by_id(survey_id, user_id=user_id),
                timeout=self.timeout_seconds,
            )
            return RemoteVerdict.available()
        except AlreadyRespondedError as e:
            logger.info(f"Survey {survey_id} already answered remotely by user {user_id}")
            return RemoteVerdict.completed(detail=e.message)
        except IdentityError as e:
            verdict = RemoteVerdict.indeterminate(IndeterminateCause.AUTH_ERROR, e.message)
        except asyncio.TimeoutError:
            verdict = RemoteVerdict.indeterminate(
                IndeterminateCause.NETWORK_ERROR, f"Probe timed out after {self.timeout_seconds}s"
            )
        except FormServiceUnavailableError as e:
            verdict = RemoteVerdict.indeterminate(IndeterminateCause.NETWORK_ERROR, e.message)
        except FormServiceServerError as e:
            verdict = RemoteVerdict.indeterminate(IndeterminateCause.SERVER_ERROR, e.message)
        except Exception as e:
            verdict = RemoteVerdict.indeterminate(IndeterminateCause.SERVER_ERROR, str(e))

        logger.warning(
            f"Status probe for survey {survey_id} indeterminate ({verdict.cause.value}): {verdict.detail}"
        )
        return verdict
