from .base import (
    AuditRepository,
    LotRepository,
    OrderRepository,
    ReservationRepository,
    UserRepository,
)
from .memory import MemoryStore

__all__ = [
    "AuditRepository",
    "LotRepository",
    "MemoryStore",
    "OrderRepository",
    "ReservationRepository",
    "UserRepository",
]
