"""API route modules."""

from training_operator.routes.controller import router as controller_router
from training_operator.routes.health import router as health_router

__all__ = [
    "controller_router",
    "health_router",
]
