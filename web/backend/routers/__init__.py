"""API route handlers."""

from .send import router as send_router
from .types import router as types_router
from .preferences import router as preferences_router
from .actions import router as actions_router
from .addresses import router as addresses_router
from .notifications import router as notifications_router
