"""
Infrastructure layer - storage backends and external system stand-ins.
Keeps business logic clean from implementation details.
"""

from .memory_store import InMemoryCapacityStore
from .refund_gateway import InMemoryRefundGateway
from .sql_store import SqlCapacityStore

__all__ = ['InMemoryCapacityStore', 'InMemoryRefundGateway', 'SqlCapacityStore']
