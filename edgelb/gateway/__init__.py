"""
Edge Gateway Load Balancer Components

This module handles the gateway resources behind one logical load balancer:
- NatRuleManager / PoolManager / VirtualServiceManager: idempotent CRUD
- AddressAllocator: external address allocation
- RdeManager: shared virtual IP record with optimistic concurrency
- GatewayManager: composite orchestrator
"""

from .address_allocator import AddressAllocator
from .manager import GatewayManager
from .nat_rules import NatRuleManager
from .pools import PoolManager
from .rde import RdeManager
from .seg import ServiceEngineGroupLookup
from .virtual_services import VirtualServiceManager

__all__ = [
    "AddressAllocator",
    "GatewayManager",
    "NatRuleManager",
    "PoolManager",
    "RdeManager",
    "ServiceEngineGroupLookup",
    "VirtualServiceManager",
]
