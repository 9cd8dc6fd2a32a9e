"""Client for the external form service (Tally proxy)."""
import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp
from aiohttp import ClientTimeout, ClientError

from rewards_backend.config import get_settings
from rewards_backend.services.form_errors import (
    FormServiceError,
    FormServiceServerError,
    FormServiceUnavailableError,
    build_form_error,
)

logger = logging.getLogger(__name__)


class FormServiceClient:
    """
    Client for the form service that stores survey definitions and responses.

    Every failure is raised as a :class:`FormServiceError` subclass so callers
    never see raw aiohttp exceptions. Session is created lazily on first use and
    should be closed on shutdown.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.form_service_url).rstrip('/')
        self.api_key = api_key if api_key is not None else self.settings.form_service_api_key
        self.identity_header = self.settings.identity_header
        self.timeout = ClientTimeout(total=timeout_seconds or self.settings.form_service_timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - ensure session is closed."""
        await self.close()

    async def _ensure_session(self):
        """Ensure session exists and is not closed."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            logger.debug("Created new aiohttp session for form service client")

    async def close(self):
        """Close the underlying aiohttp client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session for form service client")
            self._session = None

    def _headers(self, user_id=None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if user_id is not None and str(user_id).strip():
            headers[self.identity_header] = str(user_id)
        return headers

    @staticmethod
    async def _read_error_message(response) -> str:
        """Extract the human-readable error text from an error response."""
        text = await response.text()
        try:
            data = json.loads(text)
        except (TypeError, ValueError):
            return text.strip()
        if isinstance(data, dict):
            for key in ("message", "error", "detail"):
                if data.get(key):
                    return str(data[key])
            return ""
        return text.strip()

    async def _request(self, endpoint: str, user_id=None, payload: dict | None = None) -> Any:
        """Make HTTP request to the form service and decode the JSON body."""
        await self._ensure_session()
        url = f"{self.base_url}{endpoint}"
        headers = self._headers(user_id)

        try:
            if payload is None:
                request = self._session.get(url, headers=headers)
            else:
                request = self._session.post(url, json=payload, headers=headers)

            async with request as response:
                if 200 <= response.status < 300:
                    try:
                        return await response.json(content_type=None)
                    except ValueError as exc:
                        logger.error(f"Form service returned malformed body for {endpoint}: {exc}")
                        raise FormServiceServerError(
                            "Form service returned a malformed body", status=response.status
                        ) from exc

                message = await self._read_error_message(response)
                logger.warning(f"Form service error {response.status} for {endpoint}: {message}")
                raise build_form_error(response.status, message)

        except FormServiceError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error(f"Form service timeout for {endpoint}")
            raise FormServiceUnavailableError("Form service timeout - please try again") from exc
        except ClientError as exc:
            logger.error(f"Form service client error for {endpoint}: {exc}")
            raise FormServiceUnavailableError("Form service unavailable - please try again") from exc

    @staticmethod
    def _unwrap_items(data: Any, what: str) -> list[dict]:
        # The proxy answers either {"items": [...]} or a bare list
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            return data["items"]
        if isinstance(data, list):
            return data
        logger.warning(f"Unexpected {what} response structure: {type(data)}")
        raise FormServiceServerError(f"Unexpected {what} response structure")

    async def list_forms(self) -> list[dict]:
        """
        Retrieve the full form catalog.

        Returns:
            List of raw catalog items ({id, name, status, numberOfSubmissions, ...}).
        """
        data = await self._request("/tally/forms")
        return self._unwrap_items(data, "catalog")

    async def get_form_by_id(self, form_id: str, user_id=None) -> dict:
        """
        Fetch one form on behalf of a user.

        The service refuses the call when the respondent already answered the
        form, which makes this call double as a status check.
        """
        return await self._request(f"/tally/forms/{quote(str(form_id), safe='')}", user_id=user_id)

    async def get_form_responses(self, form_id: str) -> list[dict]:
        """Retrieve stored responses for a form."""
        data = await self._request(f"/tally/tally/forms/{quote(str(form_id), safe='')}/responses")
        return self._unwrap_items(data, "responses")

    async def submit_form_response(self, form_id: str, answers: dict | list, respondent_id) -> dict:
        """
        Submit answers for a form.

        Args:
            form_id: The form to answer
            answers: Answer payload as accepted by the service
            respondent_id: Identity of the user answering

        Returns:
            The service's submission record
        """
        payload = {
            "answers": answers,
            "respondentId": str(respondent_id) if respondent_id is not None else None,
        }
        logger.info(f"Submitting response for form {form_id} on behalf of {respondent_id=}")
        return await self._request(
            f"/tally/forms/{quote(str(form_id), safe='')}/submit",
            user_id=respondent_id,
            payload=payload,
        )

    async def health_check(self) -> bool:
        """
        Check if the form service is healthy.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            await self._request("/health")
            return True
        except FormServiceError as e:
            logger.error(f"Form service health check failed: {e}")
            return False


# Singleton instance
_form_service_client: FormServiceClient | None = None


def get_form_service_client() -> FormServiceClient:
    """Get singleton form service client instance."""
    global _form_service_client
    if _form_service_client is None:
        _form_service_client = FormServiceClient()
    return _form_service_client
