"""API routers."""
from rewards_backend.routers import diagnostics, health, surveys, webhooks

__all__ = [
    "diagnostics",
    "health",
    "surveys",
    "webhooks",
]
