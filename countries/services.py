import logging
import threading
from dataclasses import dataclass

from django.utils import timezone

from .exceptions import RefreshInProgress
from .imaging import generate_summary_image
from .persistence import upsert_countries
from .reconcile import reconcile_countries
from .sources import fetch_sources

logger = logging.getLogger(__name__)

# one refresh at a time per process; other processes are not coordinated
_refresh_lock = threading.Lock()


@dataclass(frozen=True)
class RefreshResult:
    total_records: int
    timestamp: object


def refresh_countries(multipliers=None):
    """
    Fetch both sources, rebuild the country cache and redraw the summary image.

    Raises SourceUnavailable before anything is written, StorageFailure if
    the upsert rolls back, and RefreshInProgress if another refresh is
    already running in this process. ``multipliers`` is handed to the
    reconciler to pin the estimated GDP multiplier.
    """
    if not _refresh_lock.acquire(blocking=False):
        raise RefreshInProgress("A country refresh is already running")
    try:
        raw_countries, rates = fetch_sources()
        refreshed_at = timezone.now()
        records = reconcile_countries(raw_countries, rates, refreshed_at, multipliers)
        result = upsert_countries(records, refreshed_at)
        generate_summary_image(result.total, refreshed_at, result.top_countries)
    finally:
        _refresh_lock.release()

    logger.info("Refresh complete: %d countries cached", result.total)
    return RefreshResult(total_records=result.total, timestamp=refreshed_at)
