"""Typed errors raised by the form service client.

The form service reports failures as an HTTP status plus free-form text.
``classify_form_error`` is the only place that looks at that text; everything
downstream pattern-matches on :class:`FormErrorKind` or the exception type.
"""
from __future__ import annotations

from enum import Enum


class FormErrorKind(str, Enum):
    """Closed set of form service failure categories."""
    ALREADY_RESPONDED = "already_responded"
    IDENTITY = "identity"
    NETWORK = "network"
    SERVER = "server"


class FormServiceError(Exception):
    """Base class for form service failures."""

    kind: FormErrorKind = FormErrorKind.SERVER

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AlreadyRespondedError(FormServiceError):
    """The respondent already has a response for this form."""

    kind = FormErrorKind.ALREADY_RESPONDED


class IdentityError(FormServiceError):
    """Caller identity is missing, invalid or not resolvable."""

    kind = FormErrorKind.IDENTITY


class FormServiceUnavailableError(FormServiceError):
    """Transport failure: timeout, refused connection, DNS, reset."""

    kind = FormErrorKind.NETWORK


class FormServiceServerError(FormServiceError):
    """The service answered, but with an error or a malformed body."""

    kind = FormErrorKind.SERVER


_ALREADY_RESPONDED_MARKERS = (
    "already responded",
    "already submitted",
    "already completed",
    "already has a response",
    "already filled",
    "уже прош",
    "уже заполн",
    "уже отправ",
    "allaqachon",
)

_IDENTITY_MARKERS = (
    "not authenticated",
    "unauthorized",
    "identity",
    "invalid token",
    "telegram",
    "личность",
    "авториз",
)

_ERROR_TYPES: dict[FormErrorKind, type[FormServiceError]] = {
    FormErrorKind.ALREADY_RESPONDED: AlreadyRespondedError,
    FormErrorKind.IDENTITY: IdentityError,
    FormErrorKind.NETWORK: FormServiceUnavailableError,
    FormErrorKind.SERVER: FormServiceServerError,
}


def classify_form_error(status: int | None, message: str | None) -> FormErrorKind:
    """Map a raw failure (HTTP status, body text) to a :class:`FormErrorKind`.

    ``status`` is ``None`` when no HTTP response was received.
    """
    text = (message or "").strip().lower()

    if status == 409 or any(marker in text for marker in _ALREADY_RESPONDED_MARKERS):
        return FormErrorKind.ALREADY_RESPONDED

    if status in (401, 403) or any(marker in text for marker in _IDENTITY_MARKERS):
        return FormErrorKind.IDENTITY

    # The proxy answers a bare 400 when no Telegram identity accompanies the call
    if status == 400 and not text:
        return FormErrorKind.IDENTITY

    if status is None:
        return FormErrorKind.NETWORK

    return FormErrorKind.SERVER


def build_form_error(status: int | None, message: str | None) -> FormServiceError:
    """Create the typed exception matching a raw failure."""
    kind = classify_form_error(status, message)
    text = message or (f"Form service error: {status}" if status is not None else "Form service unreachable")
    return _ERROR_TYPES[kind](text, status=status)
