"""FastAPI dependencies."""
import hashlib
import hmac
import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import get_settings
from rewards_backend.database import get_db
from rewards_backend.services.availability_resolver import AvailabilityResolver
from rewards_backend.services.completion_coordinator import CompletionCoordinator
from rewards_backend.services.completion_store import CompletionStore, normalize_user_id
from rewards_backend.services.equivalence_groups import EquivalenceGroupRegistry

logger = logging.getLogger(__name__)


def _mask_identifier(identifier: str) -> str:
    """Mask a user identifier for logging."""
    if not identifier:
        return "<missing>"
    if len(identifier) <= 4:
        return f"{identifier[:1]}..."
    return f"{identifier[:2]}...{identifier[-2:]}"


async def get_optional_user_id(request: Request) -> str | None:
    """Read the caller identity from the configured header, if present."""
    settings = get_settings()
    return normalize_user_id(request.headers.get(settings.identity_header))


async def get_current_user_id(user_id: str | None = Depends(get_optional_user_id)) -> str:
    """Require a caller identity."""
    if user_id is None:
        settings = get_settings()
        logger.warning(f"Request without {settings.identity_header} header rejected")
        raise HTTPException(status_code=401, detail=f"Missing {settings.identity_header} header")
    logger.debug(f"Resolved caller {_mask_identifier(user_id)}")
    return user_id


def compute_tally_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def verify_tally_signature(request: Request) -> None:
    """Reject webhook calls whose signature does not match the configured secret."""
    settings = get_settings()
    if not settings.tally_webhook_secret:
        return

    signature = request.headers.get(settings.tally_signature_header, "")
    expected = compute_tally_signature(settings.tally_webhook_secret, await request.body())
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Rejected webhook from {request.client.host if request.client else 'unknown'}: bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")


async def require_diagnostics_enabled() -> None:
    """Hide diagnostic routes unless explicitly enabled."""
    if not get_settings().diagnostics_enabled:
        raise HTTPException(status_code=404, detail="Not Found")


def get_completion_store(db: AsyncSession = Depends(get_db)) -> CompletionStore:
    return CompletionStore(db)


def get_group_registry(store: CompletionStore = Depends(get_completion_store)) -> EquivalenceGroupRegistry:
    return EquivalenceGroupRegistry.from_config(get_settings().survey_groups, store=store)


def get_availability_resolver(db: AsyncSession = Depends(get_db)) -> AvailabilityResolver:
    return AvailabilityResolver(db)


def get_completion_coordinator(db: AsyncSession = Depends(get_db)) -> CompletionCoordinator:
    return CompletionCoordinator(db)
