"""
Gateway API Clients
"""

from .base import GatewayClient
from .cloudapi import CloudApiClient

__all__ = [
    "GatewayClient",
    "CloudApiClient",
]
