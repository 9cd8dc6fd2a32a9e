from rewards_backend.services.form_errors import (
    FormErrorKind,
    FormServiceError,
    AlreadyRespondedError,
    IdentityError,
    FormServiceUnavailableError,
    FormServiceServerError,
    classify_form_error,
)
from rewards_backend.services.form_service_client import FormServiceClient, get_form_service_client
from rewards_backend.services.completion_store import CompletionStore
from rewards_backend.services.equivalence_groups import EquivalenceGroup, EquivalenceGroupRegistry
from rewards_backend.services.status_probe import (
    RemoteStatusProbe,
    RemoteVerdict,
    VerdictKind,
    IndeterminateCause,
)
from rewards_backend.services.availability_resolver import AvailabilityResolver, CatalogUnavailableError
from rewards_backend.services.completion_coordinator import CompletionCoordinator

__all__ = [
    "FormErrorKind",
    "FormServiceError",
    "AlreadyRespondedError",
    "IdentityError",
    "FormServiceUnavailableError",
    "FormServiceServerError",
    "classify_form_error",
    "FormServiceClient",
    "get_form_service_client",
    "CompletionStore",
    "EquivalenceGroup",
    "EquivalenceGroupRegistry",
    "RemoteStatusProbe",
    "RemoteVerdict",
    "VerdictKind",
    "IndeterminateCause",
    "AvailabilityResolver",
    "CatalogUnavailableError",
    "CompletionCoordinator",
]
