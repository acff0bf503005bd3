"""Zone Cache - Caches Route 53 hosted zone lookups used to enrich billing line items."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

ROUTE53_PRODUCT_CODE = "AmazonRoute53"

# Failed lookups are retried after this many seconds (one billing collection interval)
DEFAULT_FAILURE_TTL = 3600.0


@dataclass(frozen=True)
class ZoneInfo:
    """Metadata of one hosted zone."""

    zone_id: str
    name: str
    record_count: int = 0
    private: bool = False


def zone_id_from_resource(resource_id: str) -> Optional[str]:
    """
    Extract the hosted zone id from a billing resource id.

    Route 53 line items carry resource ids like
    ``arn:aws:route53:::hostedzone/Z1D633PJN98FT9``. Anything that does not
    split into exactly two '/' separated parts has no usable zone id.
    """
    if not resource_id:
        return None
    parts = resource_id.split("/")
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def route53_fetcher(client: Any) -> Callable[[str], ZoneInfo]:
    """Return a fetch function backed by a boto3 Route 53 client."""

    def fetch(zone_id: str) -> ZoneInfo:
        response = client.get_hosted_zone(Id=zone_id)
        zone = response["HostedZone"]
        return ZoneInfo(
            zone_id=zone_id,
            name=zone.get("Name", ""),
            record_count=int(zone.get("ResourceRecordSetCount", 0)),
            private=bool(zone.get("Config", {}).get("PrivateZone", False)),
        )

    return fetch


class ZoneCache:
    """
    Process-lifetime cache of hosted zone metadata.

    Successful lookups are kept until ``ttl`` expires (never, by default) or
    they are invalidated. Failed lookups are remembered for ``failure_ttl``
    seconds so a zone is fetched at most once per collection run while a
    transient error does not disable enrichment for good.
    """

    def __init__(
        self,
        fetch: Callable[[str], ZoneInfo],
        ttl: Optional[float] = None,
        failure_ttl: float = DEFAULT_FAILURE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self.ttl = ttl
        self.failure_ttl = failure_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[ZoneInfo], float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, zone_id: str) -> bool:
        """True when ``get`` would answer ``zone_id`` without fetching."""
        with self._lock:
            entry = self._entries.get(zone_id)
            return entry is not None and not self._expired(*entry)

    def _expired(self, zone: Optional[ZoneInfo], stored_at: float) -> bool:
        lifetime = self.ttl if zone is not None else self.failure_ttl
        if lifetime is None:
            return False
        return self._clock() - stored_at >= lifetime

    def get(self, zone_id: str) -> Optional[ZoneInfo]:
        """Return zone metadata, fetching it on a cache miss. None if the lookup failed."""
        with self._lock:
            entry = self._entries.get(zone_id)
            if entry is not None and not self._expired(*entry):
                self.hits += 1
                return entry[0]

            self.misses += 1
            zone: Optional[ZoneInfo] = None
            try:
                zone = self._fetch(zone_id)
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"Cannot fetch Route 53 hosted zone {zone_id}: {e}")
            except Exception as e:
                logger.warning(f"Hosted zone lookup for {zone_id} failed: {e}")

            self._entries[zone_id] = (zone, self._clock())
            return zone

    def invalidate(self, zone_id: str) -> None:
        with self._lock:
            self._entries.pop(zone_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def enrich(self, item: Any) -> Any:
        """
        Attach hosted zone metadata to a Route 53 line item.

        Items of other products, or without a usable zone id, are returned
        unchanged. The item must provide ``product_code``, ``resource_id`` and
        ``with_zone()``.
        """
        if item.product_code != ROUTE53_PRODUCT_CODE:
            return item
        zone_id = zone_id_from_resource(item.resource_id)
        if zone_id is None:
            return item
        zone = self.get(zone_id)
        if zone is None:
            return item
        return item.with_zone(zone)
