from .base import PhaseTimestamps, RawExchange, Transport
from .default import HTTPXTransport

__all__ = [
    "HTTPXTransport",
    "PhaseTimestamps",
    "RawExchange",
    "Transport",
]
