from .registry import MaterialRegistry, SEED_MATERIALS
from .notifications import NotificationChannel
from .simulator import ActorSimulator
from .session import SessionService
from .api import ApiService

__all__ = [
    "MaterialRegistry",
    "SEED_MATERIALS",
    "NotificationChannel",
    "ActorSimulator",
    "SessionService",
    "ApiService",
]
