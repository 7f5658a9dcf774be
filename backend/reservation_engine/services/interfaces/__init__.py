"""
Service interfaces for dependency inversion.
Allows swapping storage backends and collaborators without changing business logic.
"""

from .capacity_store import CapacityStore
from .collaborators import (
    BasePricePolicy,
    LogNotifier,
    Notifier,
    PricingPolicy,
    RefundGateway,
    RefundResult,
)

__all__ = [
    'CapacityStore',
    'PricingPolicy', 'BasePricePolicy',
    'RefundGateway', 'RefundResult',
    'Notifier', 'LogNotifier',
]
