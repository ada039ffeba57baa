"""Venue client selection from explicit configuration"""

import random

from tawarruq_gateway.config import Settings
from tawarruq_gateway.infrastructure.clients.venue import SimulatedVenueClient, VenueClient
from tawarruq_gateway.infrastructure.clients.venue_http import HttpVenueClient


def build_venue_client(config: Settings) -> VenueClient:
    if config.venue_mode == "http":
        return HttpVenueClient(
            base_url=config.venue_api_base,
            timeout=config.http_timeout_seconds,
        )

    rng = random.Random(config.venue_random_seed) if config.venue_random_seed is not None else None
    return SimulatedVenueClient(
        rng=rng,
        latency_seconds=config.venue_latency_seconds,
        third_party_buyer=config.third_party_buyer,
    )
