"""Wearable device adapters.

Each adapter implements the WearableAdapter ABC and handles:
- OAuth token refresh
- Fetching recovery, sleep and workouts with pagination and retries
- Validating and normalizing device JSON into the metric records

Available adapters:
    WhoopAdapter — WHOOP API v2 (OAuth2)
"""

from primeportal.wearables.adapters.whoop import WhoopAdapter
from primeportal.wearables.base import WearableAdapter

__all__ = [
    "WhoopAdapter",
]

# Registry: platform slug → adapter class
ADAPTER_REGISTRY: dict[str, type[WearableAdapter]] = {
    "whoop": WhoopAdapter,
}


def get_adapter(source_id: str) -> type[WearableAdapter]:
    """Return the adapter class for a ``device_connections.platform`` value.

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for source '{source_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[source_id]
