"""Transports — how commands reach a machine.

Public re-exports for convenient access.
"""

from hostforge.adapters.base import Transport
from hostforge.adapters.mock import MockTransport
from hostforge.adapters.registry import TransportRegistry

__all__ = [
    "MockTransport",
    "Transport",
    "TransportRegistry",
]
