"""
Order processing: lifecycle state machine, persistence and cache.
"""

from .cache import OrderCache
from .repository import OrderRepository
from .state_machine import OrderStateMachine

__all__ = [
    "OrderCache",
    "OrderRepository",
    "OrderStateMachine",
]
