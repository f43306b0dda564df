"""
Routing Engine

Concurrent venue quoting and best-output venue selection.
"""

from .venue_client import VenueClient, MockVenueClient, create_venue_clients
from .venue_router import VenueRouter

__all__ = [
    "VenueClient",
    "MockVenueClient",
    "create_venue_clients",
    "VenueRouter",
]
